"""
Theurgy Sign - EIP-191 message signing and signature verification.
"""

from __future__ import annotations

import sys

import click

from ..errors import SignatureError
from ..sigil.eth import eip191_digest, get_wallet, recover_address


@click.command()
@click.argument("message")
def sign(message: str) -> None:
    """Sign MESSAGE with the EIP-191 prefix (personal_sign)."""
    try:
        wallet = get_wallet()
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)

    signature = wallet.sign_message(message)
    click.echo(f"Address:   {wallet.address}")
    click.echo(f"Signature: 0x{signature.hex()}")


@click.command()
@click.option("--message", required=True, help="Signed message")
@click.option("--signature", required=True, help="65-byte hex signature")
@click.option("--address", required=True, help="Expected signer address")
def verify(message: str, signature: str, address: str) -> None:
    """Verify an EIP-191 signature against an expected signer."""
    try:
        recovered = recover_address(eip191_digest(message), signature)
    except (SignatureError, ValueError) as exc:
        click.secho(f"Invalid signature: {exc}", fg="red")
        sys.exit(getattr(exc, "exit_code", 1))

    if recovered.lower() != address.lower():
        click.secho(f"MISMATCH: signed by {recovered}", fg="red")
        sys.exit(1)

    click.secho(f"VALID: signed by {recovered}", fg="green")
