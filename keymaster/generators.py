"""Secret value generators.

A secret's ``generator`` mapping names a ``type`` plus options. Each type is a
small value class that validates its own options in ``from_options`` and
produces a value with ``generate()``::

    alpha       length      random [A-Za-z0-9] string
    hex         length      random [0-9a-f] string
    uuid                    version-4 UUID
    passphrase  words       hyphen-joined dictionary words (alias: chbs)
    static                  never generated; the value is set out of band
    tls         cn, ...     certificate bundle issued by the Vault PKI mount
    rsa         blocksize   not yet supported
"""
from __future__ import annotations

import functools
import json
import secrets
import string
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Type

from xkcdpass import xkcd_password

from .errors import GeneratorError

ALPHA_CHARS = string.ascii_letters + string.digits
HEX_CHARS = "0123456789abcdef"

DEFAULT_CA_MOUNT = "service"
DEFAULT_CERT_TTL = "8760h"
DEFAULT_PKI_ROLE = "keymaster"

# Fields Vault returns from <mount>/issue/<role>
CERT_FIELDS = (
    "private_key",
    "certificate",
    "issuing_ca",
    "ca_chain",
    "serial_number",
    "expiration",
    "private_key_type",
)


class CertIssuer(Protocol):
    def issue_cert(
        self,
        mount: str,
        role: str,
        common_name: str,
        alt_names: List[str],
        ip_sans: List[str],
        ttl: str,
    ) -> Dict[str, Any]:
        ...


# ---------------------------------------------------------------------------
# Option helpers
# ---------------------------------------------------------------------------

def _positive_int(options: Mapping[str, Any], key: str, kind: str) -> int:
    value = options.get(key)
    # bool is an int subclass; "length: yes" is not a length
    if isinstance(value, bool) or not isinstance(value, int):
        raise GeneratorError(f"{kind}: {key} must be an integer, got {value!r}")
    if value <= 0:
        raise GeneratorError(f"{kind}: {key} must be positive, got {value}")
    return value


def _opt_str(options: Mapping[str, Any], key: str, kind: str, default: str) -> str:
    if key not in options or options[key] is None:
        return default
    value = options[key]
    if not isinstance(value, str) or not value:
        raise GeneratorError(f"{kind}: bad value for option {key!r}: {value!r}")
    return value


def _opt_str_list(options: Mapping[str, Any], key: str, kind: str) -> Tuple[str, ...]:
    raw = options.get(key)
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        raise GeneratorError(f"{kind}: option {key!r} must be a list of strings")
    return tuple(raw)


def _random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


@functools.lru_cache(maxsize=1)
def _wordlist() -> Tuple[str, ...]:
    # lowercase-only words so the hyphen stays an unambiguous separator
    words = xkcd_password.generate_wordlist(
        wordfile=xkcd_password.locate_wordfile(),
        min_length=4,
        max_length=9,
        valid_chars="[a-z]",
    )
    return tuple(words)


# ---------------------------------------------------------------------------
# Generator kinds
# ---------------------------------------------------------------------------

class Generator:
    """Base class; subclasses register themselves under ``type_name``."""

    type_name = ""

    @classmethod
    def from_options(cls, options: Mapping[str, Any], issuer: Optional[CertIssuer] = None,
                     pki_role: str = DEFAULT_PKI_ROLE) -> "Generator":
        return cls()

    def generate(self) -> Optional[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class AlphaGenerator(Generator):
    length: int
    type_name = "alpha"

    @classmethod
    def from_options(cls, options, issuer=None, pki_role=DEFAULT_PKI_ROLE):
        return cls(length=_positive_int(options, "length", cls.type_name))

    def generate(self) -> str:
        return _random_string(ALPHA_CHARS, self.length)


@dataclass(frozen=True)
class HexGenerator(Generator):
    length: int
    type_name = "hex"

    @classmethod
    def from_options(cls, options, issuer=None, pki_role=DEFAULT_PKI_ROLE):
        return cls(length=_positive_int(options, "length", cls.type_name))

    def generate(self) -> str:
        return _random_string(HEX_CHARS, self.length)


@dataclass(frozen=True)
class UUIDGenerator(Generator):
    type_name = "uuid"

    def generate(self) -> str:
        return str(uuid.uuid4())


@dataclass(frozen=True)
class PassphraseGenerator(Generator):
    """Correct-horse-battery-staple style passphrases."""

    words: int
    type_name = "passphrase"

    @classmethod
    def from_options(cls, options, issuer=None, pki_role=DEFAULT_PKI_ROLE):
        return cls(words=_positive_int(options, "words", cls.type_name))

    def generate(self) -> str:
        return xkcd_password.generate_xkcdpassword(
            list(_wordlist()), numwords=self.words, delimiter="-",
        )


@dataclass(frozen=True)
class StaticGenerator(Generator):
    type_name = "static"

    def generate(self) -> None:
        return None


@dataclass(frozen=True)
class RSAGenerator(Generator):
    blocksize: Optional[int] = None
    type_name = "rsa"

    @classmethod
    def from_options(cls, options, issuer=None, pki_role=DEFAULT_PKI_ROLE):
        if options.get("blocksize") is None:
            return cls()
        return cls(blocksize=_positive_int(options, "blocksize", cls.type_name))

    def generate(self) -> str:
        raise GeneratorError("rsa secrets are not yet supported")


@dataclass(frozen=True)
class TLSGenerator(Generator):
    """Asks the Vault PKI mount named by ``ca`` to issue a certificate.

    ``generate()`` returns the issued bundle as a JSON string; the
    provisioner decomposes it into separate stored fields.
    """

    common_name: str
    sans: Tuple[str, ...] = ()
    ip_sans: Tuple[str, ...] = ()
    ca: str = DEFAULT_CA_MOUNT
    ttl: str = DEFAULT_CERT_TTL
    pki_role: str = DEFAULT_PKI_ROLE
    issuer: Optional[CertIssuer] = field(default=None, compare=False, repr=False)
    type_name = "tls"

    @classmethod
    def from_options(cls, options, issuer=None, pki_role=DEFAULT_PKI_ROLE):
        cn = options.get("cn")
        if not isinstance(cn, str) or not cn:
            raise GeneratorError(f"tls: bad value for option 'cn': {cn!r}")
        return cls(
            common_name=cn,
            sans=_opt_str_list(options, "sans", cls.type_name),
            ip_sans=_opt_str_list(options, "ip_sans", cls.type_name),
            ca=_opt_str(options, "ca", cls.type_name, DEFAULT_CA_MOUNT),
            ttl=_opt_str(options, "ttl", cls.type_name, DEFAULT_CERT_TTL),
            pki_role=pki_role,
            issuer=issuer,
        )

    def generate(self) -> str:
        if self.issuer is None:
            raise GeneratorError(f"tls: no certificate issuer bound for {self.common_name}")
        bundle = self.issuer.issue_cert(
            mount=self.ca,
            role=self.pki_role,
            common_name=self.common_name,
            alt_names=list(self.sans),
            ip_sans=list(self.ip_sans),
            ttl=self.ttl,
        )
        if not bundle:
            raise GeneratorError(f"tls: no certificate returned for {self.common_name}")
        return json.dumps({k: bundle.get(k) for k in CERT_FIELDS})


GENERATORS: Dict[str, Type[Generator]] = {
    "alpha": AlphaGenerator,
    "hex": HexGenerator,
    "uuid": UUIDGenerator,
    "passphrase": PassphraseGenerator,
    "chbs": PassphraseGenerator,
    "static": StaticGenerator,
    "tls": TLSGenerator,
    "rsa": RSAGenerator,
}


def build_generator(
    spec: Mapping[str, Any],
    issuer: Optional[CertIssuer] = None,
    pki_role: str = DEFAULT_PKI_ROLE,
) -> Generator:
    """Build the generator a secret's ``generator`` mapping describes."""
    if not isinstance(spec, Mapping):
        raise GeneratorError(f"generator must be a mapping, got {type(spec).__name__}")
    gen_type = spec.get("type")
    if not isinstance(gen_type, str) or not gen_type:
        raise GeneratorError("generator has no type")
    cls = GENERATORS.get(gen_type)
    if cls is None:
        raise GeneratorError(f"unknown generator: {gen_type}")
    return cls.from_options(spec, issuer=issuer, pki_role=pki_role)
