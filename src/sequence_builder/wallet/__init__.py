"""Key material for sequence-builder.

Generates and validates secp256k1 private keys, encrypts them at rest under a
passphrase, and resolves which key a command should use.
"""
