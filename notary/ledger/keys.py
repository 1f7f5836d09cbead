from __future__ import annotations

from dataclasses import dataclass

from substrateinterface import Keypair


@dataclass(frozen=True, slots=True)
class GeneratedAccount:
    mnemonic: str
    keypair: Keypair

    @property
    def address(self) -> str:
        return self.keypair.ss58_address

    @property
    def public_key(self) -> str:
        return "0x" + self.keypair.public_key.hex()

    def __repr__(self) -> str:
        return f"GeneratedAccount(address={self.address!r})"


def generate_account(*, ss58_format: int) -> GeneratedAccount:
    mnemonic = Keypair.generate_mnemonic()
    return GeneratedAccount(mnemonic=mnemonic, keypair=keypair_from_mnemonic(mnemonic, ss58_format=ss58_format))


def keypair_from_mnemonic(mnemonic: str, *, ss58_format: int) -> Keypair:
    return Keypair.create_from_mnemonic(mnemonic, ss58_format=ss58_format)
