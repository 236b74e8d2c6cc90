# config.py
import json
from dataclasses import asdict, dataclass, field, fields
from typing import List

from errors import ConfigError

TIER_NAMES = ("low", "medium", "high")
CPU_METHODS = ("tick_delta", "loadavg")


@dataclass
class ThresholdTier:
    cpu_ceiling: float
    mem_ceiling: float
    batch_size: int


@dataclass
class ResourceThresholds:
    low: ThresholdTier = field(default_factory=lambda: ThresholdTier(50, 60, 20))
    medium: ThresholdTier = field(default_factory=lambda: ThresholdTier(70, 75, 16))
    high: ThresholdTier = field(default_factory=lambda: ThresholdTier(80, 85, 12))
    fallback_batch_size: int = 8

    def tiers(self):
        """Tiers in ascending evaluation order."""
        return [(name, getattr(self, name)) for name in TIER_NAMES]

    @classmethod
    def from_dict(cls, data):
        unknown = set(data) - set(TIER_NAMES) - {"fallback_batch_size"}
        if unknown:
            raise ConfigError(f"Unknown resource threshold keys: {', '.join(sorted(unknown))}")
        kwargs = {}
        for name in TIER_NAMES:
            if name in data:
                tier = data[name]
                try:
                    kwargs[name] = ThresholdTier(
                        cpu_ceiling=float(tier["cpu_ceiling"]),
                        mem_ceiling=float(tier["mem_ceiling"]),
                        batch_size=int(tier["batch_size"]),
                    )
                except (KeyError, TypeError, ValueError) as e:
                    raise ConfigError(f"Invalid '{name}' threshold tier: {tier!r}") from e
        if "fallback_batch_size" in data:
            kwargs["fallback_batch_size"] = int(data["fallback_batch_size"])
        return cls(**kwargs)


@dataclass
class AdmissionLimits:
    max_cpu_pct: float = 80
    max_mem_pct: float = 85
    min_free_mb: int = 512

    @classmethod
    def from_dict(cls, data):
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigError(f"Unknown admission limit keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**{k: float(v) if k != "min_free_mb" else int(v) for k, v in data.items()})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid admission limits: {data!r}") from e


@dataclass
class EngineConfig:
    max_batch_size: int = 20
    min_batch_size: int = 1
    retry_max_attempts: int = 3
    retry_delay_ladder_ms: List[int] = field(default_factory=lambda: [60000, 180000, 300000])
    download_delay_ms: int = 15 * 60 * 1000
    cooldown_ms: int = 1000
    resource_thresholds: ResourceThresholds = field(default_factory=ResourceThresholds)
    admission_limits: AdmissionLimits = field(default_factory=AdmissionLimits)
    dispatch_interval_ms: int = 1000
    reservation_timeout_ms: int = 30 * 60 * 1000
    admission_starvation_ms: int = 5 * 60 * 1000
    cpu_method: str = "tick_delta"
    history_limit: int = 1000

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.min_batch_size < 1:
            raise ConfigError("min_batch_size must be at least 1")
        if self.max_batch_size < self.min_batch_size:
            raise ConfigError("max_batch_size must be >= min_batch_size")
        if self.retry_max_attempts < 0:
            raise ConfigError("retry_max_attempts must not be negative")
        if not self.retry_delay_ladder_ms:
            raise ConfigError("retry_delay_ladder_ms must contain at least one delay")
        if any(d < 0 for d in self.retry_delay_ladder_ms):
            raise ConfigError("retry delays must not be negative")
        if self.cpu_method not in CPU_METHODS:
            raise ConfigError(f"cpu_method must be one of {', '.join(CPU_METHODS)}")
        for name in ("download_delay_ms", "cooldown_ms", "dispatch_interval_ms",
                     "reservation_timeout_ms", "admission_starvation_ms"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")

    def retry_delay_ms(self, attempts):
        """Delay before retry number ``attempts`` (1-based); the last rung repeats."""
        index = min(max(attempts, 1), len(self.retry_delay_ladder_ms)) - 1
        return self.retry_delay_ladder_ms[index]

    def clamp_batch_size(self, size):
        return max(self.min_batch_size, min(self.max_batch_size, size))

    # ---------------- Loaders ----------------
    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        kwargs = dict(data)
        if isinstance(kwargs.get("resource_thresholds"), dict):
            kwargs["resource_thresholds"] = ResourceThresholds.from_dict(kwargs["resource_thresholds"])
        if isinstance(kwargs.get("admission_limits"), dict):
            kwargs["admission_limits"] = AdmissionLimits.from_dict(kwargs["admission_limits"])
        if "retry_delay_ladder_ms" in kwargs:
            kwargs["retry_delay_ladder_ms"] = [int(d) for d in kwargs["retry_delay_ladder_ms"]]
        return cls(**kwargs)

    @classmethod
    def from_storage(cls, db):
        """Build a config from the storage ``config`` table, falling back to defaults."""
        data = {}
        for f in fields(cls):
            raw = db.get_config(f.name)
            if raw is None:
                continue
            data[f.name] = parse_config_value(f.name, raw)
        return cls.from_dict(data)

    def to_dict(self):
        return asdict(self)


_STRUCTURED_KEYS = ("retry_delay_ladder_ms", "resource_thresholds", "admission_limits")


def parse_config_value(key, raw):
    """Turn a text value from the config table into the type ``key`` expects."""
    known = {f.name: f for f in fields(EngineConfig)}
    if key not in known:
        raise ConfigError(f"Unknown config key: {key}")
    try:
        if key in _STRUCTURED_KEYS:
            return json.loads(raw)
        if key == "cpu_method":
            return raw
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {key}: {raw!r}") from e
