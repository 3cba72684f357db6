import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import CaCertNotFound, CaKeyNotFound, WorkingDirNotFound


def _env_int(name: str, default: int, base: int = 10) -> int:
    try:
        value = int(os.getenv(name, ""), base)
        if value <= 0:
            raise ValueError
    except ValueError:
        value = default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    LOG_LEVEL: str = field(default="INFO")
    WORKING_DIR: Path = field(default=Path("/root/ca"))
    OUTPUT_DIR: Path = field(default=Path("/home/fluxadmin/ssl/pem-out"))
    CSR_INPUT_DIR: Path = field(default=Path("/home/fluxadmin/ssl"))
    CA_CERT_PATH: Optional[Path] = field(default=None)
    CA_KEY_PATH: Optional[Path] = field(default=None)
    KEY_SIZE: int = field(default=4096)
    CERT_DAYS: int = field(default=375)
    PRIVATE_KEY_MODE: int = field(default=0o400)
    CERTIFICATE_MODE: int = field(default=0o755)
    CSR_MODE: int = field(default=0o644)
    OUTPUT_DIR_MODE: int = field(default=0o755)
    PARALLEL: bool = field(default=True)
    MAX_WORKERS: int = field(default=4)
    VERIFY_CA_CONSISTENCY: bool = field(default=True)

    @property
    def intermediate_dir(self) -> Path:
        return Path(self.WORKING_DIR) / "intermediate"

    @property
    def private_dir(self) -> Path:
        return self.intermediate_dir / "private"

    @property
    def csr_dir(self) -> Path:
        return self.intermediate_dir / "csr"

    @property
    def certs_dir(self) -> Path:
        return self.intermediate_dir / "certs"

    @property
    def ca_cert_path(self) -> Path:
        return Path(self.CA_CERT_PATH) if self.CA_CERT_PATH else self.certs_dir / "intermediate.cert.pem"

    @property
    def ca_key_path(self) -> Path:
        return Path(self.CA_KEY_PATH) if self.CA_KEY_PATH else self.private_dir / "intermediate.key.pem"

    def validate(self) -> None:
        if not Path(self.WORKING_DIR).is_dir():
            raise WorkingDirNotFound(self.WORKING_DIR)
        if not self.ca_key_path.exists():
            raise CaKeyNotFound(self.ca_key_path)
        if not self.ca_cert_path.exists():
            raise CaCertNotFound(self.ca_cert_path)

    @staticmethod
    def from_env() -> "Settings":
        log_level = os.getenv("CERTSMITH_LOG_LEVEL", "INFO").upper()
        working_dir = Path(os.getenv("CERTSMITH_WORKING_DIR", "/root/ca"))
        ca_cert = os.getenv("CERTSMITH_CA_CERT")
        ca_key = os.getenv("CERTSMITH_CA_KEY")
        return Settings(
            LOG_LEVEL=log_level,
            WORKING_DIR=working_dir,
            OUTPUT_DIR=Path(os.getenv("CERTSMITH_OUTPUT_DIR", "/home/fluxadmin/ssl/pem-out")),
            CSR_INPUT_DIR=Path(os.getenv("CERTSMITH_CSR_INPUT_DIR", "/home/fluxadmin/ssl")),
            CA_CERT_PATH=Path(ca_cert) if ca_cert else None,
            CA_KEY_PATH=Path(ca_key) if ca_key else None,
            KEY_SIZE=_env_int("CERTSMITH_KEY_SIZE", 4096),
            CERT_DAYS=_env_int("CERTSMITH_CERT_DAYS", 375),
            # modes are octal strings, e.g. "400"
            PRIVATE_KEY_MODE=_env_int("CERTSMITH_PRIVATE_KEY_MODE", 0o400, 8),
            CERTIFICATE_MODE=_env_int("CERTSMITH_CERTIFICATE_MODE", 0o755, 8),
            CSR_MODE=_env_int("CERTSMITH_CSR_MODE", 0o644, 8),
            OUTPUT_DIR_MODE=_env_int("CERTSMITH_OUTPUT_DIR_MODE", 0o755, 8),
            PARALLEL=_env_bool("CERTSMITH_PARALLEL", True),
            MAX_WORKERS=_env_int("CERTSMITH_MAX_WORKERS", 4),
            VERIFY_CA_CONSISTENCY=_env_bool("CERTSMITH_VERIFY_CA", True),
        )
