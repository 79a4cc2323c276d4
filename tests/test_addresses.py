"""Tests for settle-address validation."""

import pytest

from swap_engine.addresses import RegexAddressValidator

EVM = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
BTC_BECH32 = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
BTC_LEGACY = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
SOLANA = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


@pytest.fixture()
def validator() -> RegexAddressValidator:
    return RegexAddressValidator()


class TestRegexAddressValidator:
    @pytest.mark.parametrize("network", ["ethereum", "arbitrum", "polygon", "base"])
    def test_evm_networks(self, validator: RegexAddressValidator, network: str) -> None:
        assert validator.is_valid(EVM, network)

    def test_bitcoin(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(BTC_BECH32, "bitcoin")
        assert validator.is_valid(BTC_LEGACY, "bitcoin")
        assert not validator.is_valid(EVM, "bitcoin")

    def test_solana(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(SOLANA, "solana")
        assert not validator.is_valid(EVM, "solana")

    def test_network_name_is_normalized(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(BTC_BECH32, "Bitcoin")

    def test_unknown_network_uses_evm_pattern(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(EVM, "some-new-l2")
        assert not validator.is_valid(SOLANA, "some-new-l2")

    def test_no_network_accepts_any_known_format(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(SOLANA)
        assert validator.is_valid(EVM)

    @pytest.mark.parametrize("address", ["", "   ", "0x123", "not an address"])
    def test_rejects_malformed(self, validator: RegexAddressValidator, address: str) -> None:
        assert not validator.is_valid(address, "ethereum")

    def test_whitespace_is_trimmed(self, validator: RegexAddressValidator) -> None:
        assert validator.is_valid(f"  {EVM}\n", "ethereum")
