"""Provider resolution: one immutable ProviderConfig, passed explicitly.

The environment is read once, in :func:`resolve_provider_config`. Everything
downstream works from the frozen :class:`ProviderConfig` it returns, so a
generator never re-reads ambient state mid-call.
"""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import math
import os
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from castor.errors import ConfigurationError, MissingCredentialError

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

PROVIDER_ENV_VAR = "CASTOR_PROVIDER"
DEFAULT_FAMILY_API_KEY_ENV = "GEMINI_API_KEY"
DEEPSEEK_MODEL_PREFIX = "deepseek-"


class ProviderKind(str, enum.Enum):
    """Every backend the calling layer can be wired to."""

    GEMINI = "gemini"
    COMPUTE_ADC = "compute_adc"
    DEEPSEEK = "deepseek"
    OPENAI_COMPATIBLE = "openai_compatible"
    VERTEX_AI = "vertex_ai"

    @property
    def is_chat_completions(self) -> bool:
        """Whether this kind speaks the OpenAI-style chat-completions schema."""
        return self in (ProviderKind.DEEPSEEK, ProviderKind.OPENAI_COMPATIBLE)

    @classmethod
    def parse(cls, raw: str) -> ProviderKind:
        """Parse a selector value, case-insensitively."""
        value = raw.strip().lower()
        try:
            return cls(value)
        except ValueError:
            names = ", ".join(repr(k.value) for k in cls)
            raise ConfigurationError(
                f"Unknown provider: {raw!r}",
                hint=f"Set {PROVIDER_ENV_VAR} to one of: {names}",
            ) from None


@dataclass(frozen=True)
class _FamilyEnv:
    api_key: str
    base_url: str
    model: str
    temperature: str | None
    default_base_url: str
    default_model: str
    label: str


_FAMILY_ENV: dict[ProviderKind, _FamilyEnv] = {
    ProviderKind.DEEPSEEK: _FamilyEnv(
        api_key="DEEPSEEK_API_KEY",
        base_url="DEEPSEEK_BASE_URL",
        model="DEEPSEEK_MODEL",
        temperature=None,
        default_base_url="https://api.deepseek.com",
        default_model="deepseek-chat",
        label="DeepSeek",
    ),
    ProviderKind.OPENAI_COMPATIBLE: _FamilyEnv(
        api_key="OPENAI_COMPAT_API_KEY",
        base_url="OPENAI_COMPAT_BASE_URL",
        model="OPENAI_COMPAT_MODEL",
        temperature="OPENAI_COMPAT_TEMPERATURE",
        default_base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
        label="OpenAI-compatible",
    ),
}


@dataclass(frozen=True)
class OpenAICompatSettings:
    """Persisted choices for the OpenAI-compatible variant.

    This is what the selection dialog hands to the configuration layer, with
    the same checks the dialog applies.
    """

    base_url: str | None = None
    default_model: str | None = None
    temperature: float | None = None

    def __post_init__(self) -> None:
        """Validate and trim the collected values."""
        if self.base_url is not None:
            base_url = self.base_url.strip()
            if not base_url:
                raise ConfigurationError(
                    "Base URL cannot be empty.",
                    hint="The endpoint must serve /chat/completions.",
                )
            object.__setattr__(self, "base_url", base_url)
        if self.default_model is not None:
            model = self.default_model.strip()
            if not model:
                raise ConfigurationError("Default model cannot be empty.")
            object.__setattr__(self, "default_model", model)
        if self.temperature is not None and (
            isinstance(self.temperature, bool)
            or not isinstance(self.temperature, (int, float))
            or not math.isfinite(self.temperature)
        ):
            raise ConfigurationError(
                "Temperature must be a number.",
                hint="For example 0.2",
            )

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> OpenAICompatSettings:
        """Read ``providers.openai_compatible`` from a merged settings mapping.

        Both the camelCase keys written by the dialog and snake_case keys are
        accepted. Blank or malformed values are dropped rather than rejected.
        """
        providers = settings.get("providers")
        section = None
        if isinstance(providers, dict):
            section = providers.get("openai_compatible")
        if not isinstance(section, dict):
            return cls()

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in section:
                    return section[key]
            return None

        base_url = pick("baseUrl", "base_url")
        model = pick("defaultModel", "default_model")
        return cls(
            base_url=base_url if isinstance(base_url, str) and base_url.strip() else None,
            default_model=model if isinstance(model, str) and model.strip() else None,
            temperature=_parse_temperature(pick("temperature")),
        )

    def to_mapping(self) -> dict[str, Any]:
        """Return the ``providers.openai_compatible`` section to persist."""
        section: dict[str, Any] = {}
        if self.base_url is not None:
            section["baseUrl"] = self.base_url
        if self.default_model is not None:
            section["defaultModel"] = self.default_model
        if self.temperature is not None:
            section["temperature"] = self.temperature
        return {"providers": {"openai_compatible": section}}


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved provider state for one generator.

    Only the chat-completions kinds carry endpoint, credential and model data;
    for the native kinds those fields stay ``None`` and :attr:`enabled` is
    false.

    Example:
        config = resolve_provider_config({"CASTOR_PROVIDER": "deepseek",
                                          "DEEPSEEK_API_KEY": "sk-..."})
        config.resolve_model(None)  # "deepseek-chat"
    """

    kind: ProviderKind
    base_url: str | None = None
    api_key: str | None = None
    #: Explicit model override from the environment; beats the request model.
    model_override: str | None = None
    default_model: str | None = None
    #: OpenAI-compatible variant only.
    temperature: float | None = None
    #: Environment variable the key is read from, for error hints.
    api_key_env: str | None = None

    @property
    def enabled(self) -> bool:
        """Whether the chat-completions generator should serve requests."""
        return self.kind.is_chat_completions

    @property
    def label(self) -> str:
        """Human-readable family name for messages."""
        family = _FAMILY_ENV.get(self.kind)
        return family.label if family is not None else self.kind.value

    def require_api_key(self) -> str:
        """Return the API key or fail before any network call."""
        if self.api_key:
            return self.api_key
        env_var = self.api_key_env or "the provider API key"
        raise MissingCredentialError(
            f"{self.label} API key is required when {PROVIDER_ENV_VAR}={self.kind.value}.",
            hint=f"Set {env_var} or store a key for this provider.",
            env_var=self.api_key_env,
        )

    def resolve_model(self, request_model: str | None) -> str:
        """Pick the model: override > family-prefixed request model > default."""
        if self.model_override:
            return self.model_override
        if request_model and request_model.startswith(DEEPSEEK_MODEL_PREFIX):
            return request_model
        if self.default_model:
            return self.default_model
        family = _FAMILY_ENV.get(self.kind, _FAMILY_ENV[ProviderKind.DEEPSEEK])
        return family.default_model

    def resolve_base_url(self) -> str:
        """Return the configured endpoint root, or the family default."""
        if self.base_url:
            return self.base_url
        family = _FAMILY_ENV.get(self.kind, _FAMILY_ENV[ProviderKind.DEEPSEEK])
        return family.default_base_url

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ProviderConfig(kind={self.kind.value!r}, base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"model_override={self.model_override!r}, temperature={self.temperature!r})"
        )

    __repr__ = __str__


def resolve_provider_config(
    env: Mapping[str, str] | None = None,
    *,
    settings: OpenAICompatSettings | None = None,
    api_key: str | None = None,
) -> ProviderConfig:
    """Resolve the active provider once.

    Args:
        env: Environment mapping. Defaults to ``os.environ`` after loading a
            project ``.env`` file.
        settings: Persisted OpenAI-compatible choices; environment variables
            win over them.
        api_key: Key obtained elsewhere (e.g. a credential store); wins over
            the environment.

    Returns:
        Frozen ProviderConfig.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    kind = _select_kind(env)
    family = _FAMILY_ENV.get(kind)
    if family is None:
        logger.debug("Provider %s is served natively; chat-completions disabled", kind.value)
        return ProviderConfig(kind=kind)

    compat = settings if kind is ProviderKind.OPENAI_COMPATIBLE else None
    base_url = _get(env, family.base_url) or (compat.base_url if compat else None)
    temperature: float | None = None
    if family.temperature is not None:
        temperature = _parse_temperature(_get(env, family.temperature))
        if temperature is None and compat is not None:
            temperature = compat.temperature

    return ProviderConfig(
        kind=kind,
        base_url=base_url or family.default_base_url,
        api_key=api_key or _get(env, family.api_key),
        model_override=_get(env, family.model),
        default_model=compat.default_model if compat else None,
        temperature=temperature,
        api_key_env=family.api_key,
    )


def _select_kind(env: Mapping[str, str]) -> ProviderKind:
    """Explicit selector wins; otherwise auto-detect from available keys."""
    raw = _get(env, PROVIDER_ENV_VAR)
    if raw is not None:
        return ProviderKind.parse(raw)
    deepseek_key = _get(env, _FAMILY_ENV[ProviderKind.DEEPSEEK].api_key)
    if deepseek_key and not _get(env, DEFAULT_FAMILY_API_KEY_ENV):
        return ProviderKind.DEEPSEEK
    return ProviderKind.GEMINI


def _get(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_temperature(raw: Any) -> float | None:
    """Parse a finite temperature; anything else means "no override"."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric temperature %r", raw)
        return None
    if not math.isfinite(value):
        logger.debug("Ignoring non-finite temperature %r", raw)
        return None
    return value
