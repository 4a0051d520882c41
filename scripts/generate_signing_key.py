"""Generate an ES256 key pair for assertion signing.

Standalone script. Prints the private key for the IdP and the public key
for relying parties that pin it instead of fetching the issuer's JWKS.

Usage:
    python -m scripts.generate_signing_key

Rotation:
    1. Generate a new key pair
    2. Move the old public key into IDP_PREVIOUS_PUBLIC_KEYS_PEM
    3. Set IDP_PRIVATE_KEY_PEM to the new private key and restart the IdP
    4. Drop the old public key once the longest assertion lifetime has passed
"""

from letsauth.core.signing import (
    ES256,
    AssertionSigner,
    generate_private_key_pem,
    public_key_pem,
)


def main() -> None:
    """Print a fresh key pair and its key id."""
    private_pem = generate_private_key_pem()
    signer = AssertionSigner(ES256, private_key_pem=private_pem)

    print("# IDP_PRIVATE_KEY_PEM (keep secret)")
    print(private_pem)
    print("# RP_ISSUER_PUBLIC_KEY_PEM")
    print(public_key_pem(private_pem))
    print(f"# kid: {signer.key_id}")


if __name__ == "__main__":
    main()
