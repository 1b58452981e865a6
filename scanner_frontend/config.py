"""Scanner configuration: defaults, loading from parameter maps and validation."""
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping, Optional
import json
import logging

logger = logging.getLogger("scanner.config")


class ConfigError(ValueError):
    """Raised when the configuration violates an invariant at startup."""


@dataclass
class ScannerConfig:
    # Registration oracle
    gicp_maximum_iterations: int = 50
    gicp_maximum_correspondence_distance: float = 0.05
    gicp_transformation_epsilon: float = 1e-8
    gicp_euclidean_fitness_epsilon: float = 1.0
    gicp_max_iterations_similar_transforms: int = 10
    loop_maximum_correspondence_distance: float = 1.0
    # Keyframe vote / loop closure
    fitness_keyframe_threshold: float = 1.5
    fitness_loop_threshold: float = 4.5
    distance_threshold: float = 1.0  # m
    rotation_threshold: float = 1.0  # rad
    loop_closure_skip: int = 4
    # Uncertainty model
    k_disp_disp: float = 0.001
    k_rot_disp: float = 0.001
    k_rot_rot: float = 0.001
    sigma_xy: float = 0.002
    sigma_th: float = 0.001

    @classmethod
    def option_names(cls):
        return [f.name for f in fields(cls)]

    @classmethod
    def from_mapping(cls, params: Optional[Mapping[str, Any]] = None) -> "ScannerConfig":
        """Build a config from a flat mapping, logging which options fell back to defaults."""
        params = dict(params or {})
        cfg = cls()
        for f in fields(cls):
            if f.name in params and params[f.name] is not None:
                raw = params.pop(f.name)
                try:
                    value = int(raw) if f.type in (int, "int") else float(raw)
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"Option {f.name} expects a number, got {raw!r}") from exc
                setattr(cfg, f.name, value)
                logger.info("[LOADED] %s = %s", f.name, value)
            else:
                params.pop(f.name, None)
                logger.warning("[NOT LOADED][DEFAULT SET] %s = %s", f.name, getattr(cfg, f.name))
        for unknown in sorted(params):
            logger.warning("Ignoring unknown scanner option %s", unknown)
        return cfg

    def validate(self) -> "ScannerConfig":
        non_negative = (
            "gicp_maximum_correspondence_distance",
            "gicp_transformation_epsilon",
            "gicp_euclidean_fitness_epsilon",
            "loop_maximum_correspondence_distance",
            "fitness_keyframe_threshold",
            "fitness_loop_threshold",
            "distance_threshold",
            "rotation_threshold",
            "k_disp_disp",
            "k_rot_disp",
            "k_rot_rot",
            "sigma_xy",
            "sigma_th",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.gicp_maximum_iterations <= 0:
            raise ConfigError("gicp_maximum_iterations must be positive")
        if self.gicp_max_iterations_similar_transforms < 0:
            raise ConfigError("gicp_max_iterations_similar_transforms must be non-negative")
        if self.loop_closure_skip < 0:
            raise ConfigError("loop_closure_skip must be non-negative")
        if self.loop_maximum_correspondence_distance < self.gicp_maximum_correspondence_distance:
            raise ConfigError(
                "loop_maximum_correspondence_distance must be at least "
                "gicp_maximum_correspondence_distance"
            )
        return self

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _unwrap(doc: Any) -> Dict[str, Any]:
    if not isinstance(doc, dict):
        raise ConfigError(f"Config document must be a JSON object, got {type(doc).__name__}")
    if "scanner" in doc and isinstance(doc["scanner"], dict):
        doc = doc["scanner"]
    # ROS 2 parameter-file layout: {"<node or /**>": {"ros__parameters": {...}}}
    if len(doc) == 1:
        inner = next(iter(doc.values()))
        if isinstance(inner, dict) and isinstance(inner.get("ros__parameters"), dict):
            doc = inner["ros__parameters"]
    return dict(doc)


def load_config(path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> ScannerConfig:
    """Load a JSON config file (optional) and apply overrides on top."""
    params: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            params.update(_unwrap(json.load(f)))
    if overrides:
        params.update({k: v for k, v in overrides.items() if v is not None})
    return ScannerConfig.from_mapping(params).validate()
