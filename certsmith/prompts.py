"""Password and passphrase providers.

Providers are plain callables. The core only decides whether to call one;
interactive ones must not be used from inside a worker pool.
"""
import getpass
import os
from typing import Callable

from .errors import DecryptionFailed, UserCancelled


def tty_password_provider(prompt: str) -> str:
    try:
        return getpass.getpass(f"{prompt}: ")
    except (KeyboardInterrupt, EOFError) as exc:
        raise UserCancelled() from exc


def confirmed_passphrase_provider(identifier: str) -> str:
    """Ask twice for a new key passphrase; an empty or mismatched entry cancels."""
    first = tty_password_provider(f"Enter passphrase for {identifier}.key.pem")
    if not first:
        raise UserCancelled("Empty passphrase entered")
    second = tty_password_provider(f"Verify passphrase for {identifier}.key.pem")
    if first != second:
        raise UserCancelled("Passphrases do not match")
    return first


def static_password_provider(secret: str) -> Callable[[str], str]:
    def provide(_prompt: str) -> str:
        return secret
    return provide


def env_password_provider(var: str) -> Callable[[str], str]:
    def provide(_prompt: str) -> str:
        value = os.getenv(var)
        if value is None:
            raise DecryptionFailed(f"Password required but {var} is not set")
        return value
    return provide
