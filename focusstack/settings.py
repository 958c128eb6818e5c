"""Stacking parameters: defaults, YAML config files and `.param` files.

`.param` files use the binary layout of the Qt desktop
application (big-endian, Qt data stream encoding):

    8 bytes   header, "PARAMS" padded with NUL
    uint16    number of parameters
    per parameter:
        uint8     name length
        bytes     UTF-8 name
        uint8     type tag (0x01 int32, 0x02 bool, 0x03 float64)
        value
"""

from __future__ import annotations

import logging
import struct
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from focusstack.stacking.depth import check_smoothing_params
from focusstack.stacking.sharpness import ensure_odd_kernel

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

HEADER = b"PARAMS\x00\x00"
TYPE_INT = 0x01
TYPE_BOOL = 0x02
TYPE_DOUBLE = 0x03

# Names used in `.param` files, keyed by StackingParams field.
PARAM_NAMES = {
    "laplace_kernel_size": "Laplacian Kernel size",
    "smooth_kernel_size": "Smooth Kernel size",
    "smooth_strength": "Smooth strength",
    "smooth_iterations": "Smooth iterations",
    "blend_layers": "Blend layers",
}


class SettingsFormatError(ValueError):
    """Raised when a `.param` file is not in the expected format."""


@dataclass(frozen=True)
class StackingParams:
    """User-tunable parameters of a stacking run."""

    laplace_kernel_size: int = 3
    smooth_kernel_size: int = 17
    smooth_strength: float = 100.0
    smooth_iterations: int = 5
    blend_layers: bool = True

    def validated(self) -> "StackingParams":
        """Return a copy with odd kernel sizes; reject unusable values."""
        return replace(
            self,
            laplace_kernel_size=ensure_odd_kernel(self.laplace_kernel_size, "Laplacian kernel size"),
            smooth_kernel_size=ensure_odd_kernel(self.smooth_kernel_size, "Smooth kernel size"),
            smooth_strength=float(self.smooth_strength),
            smooth_iterations=check_smoothing_params(self.smooth_strength, self.smooth_iterations),
            blend_layers=bool(self.blend_layers),
        )

    def as_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `FocusStackPipeline.run`."""
        return asdict(self)

    def to_param_dict(self) -> dict[str, Any]:
        # Integral strengths are stored as int, as the Qt spin box wrote them.
        values = asdict(self)
        strength = values["smooth_strength"]
        if float(strength).is_integer():
            values["smooth_strength"] = int(strength)
        return {PARAM_NAMES[key]: value for key, value in values.items()}

    @classmethod
    def from_param_dict(cls, params: Mapping[str, Any], base: "StackingParams | None" = None) -> "StackingParams":
        """Build parameters from `.param` names; missing entries come from `base`."""
        values: dict[str, Any] = {}
        for key, name in PARAM_NAMES.items():
            if name in params:
                values[key] = params[name]
        return cls.from_mapping(values, base)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], base: "StackingParams | None" = None) -> "StackingParams":
        """Overlay known keys of `mapping` onto `base` (defaults if None)."""
        base = base or cls()
        known = {f.name for f in fields(cls)}
        updates: dict[str, Any] = {}
        for key, value in mapping.items():
            if key not in known:
                logger.warning("Ignoring unknown parameter %r", key)
                continue
            if key == "blend_layers":
                updates[key] = bool(value)
            elif key == "smooth_strength":
                updates[key] = float(value)
            else:
                # Left as given; validated() rejects fractional sizes and counts.
                updates[key] = value
        return replace(base, **updates)


def load_config(path: PathLike, base: StackingParams | None = None) -> StackingParams:
    """Load stacking parameters from a YAML file.

    The file holds a mapping of `StackingParams` field names, optionally
    nested under a top-level `stacking` key. Invalid YAML is logged and the
    base parameters are returned.
    """
    with open(path, "r", encoding="utf-8") as stream:
        try:
            configs = yaml.safe_load(stream) or {}
        except yaml.YAMLError as exc:
            logger.error(exc)
            return base or StackingParams()

    if not isinstance(configs, Mapping):
        logger.error("Config %s does not contain a mapping", path)
        return base or StackingParams()
    if isinstance(configs.get("stacking"), Mapping):
        configs = configs["stacking"]
    return StackingParams.from_mapping(configs, base)


def save_config(path: PathLike, params: StackingParams) -> None:
    with open(path, "w", encoding="utf-8") as stream:
        yaml.safe_dump({"stacking": asdict(params)}, stream, sort_keys=False)


def encode_params(parameters: Mapping[str, Any]) -> bytes:
    """Serialize a name -> value mapping to the `.param` binary format.

    Values that are not int, bool or float are skipped with a warning.
    """
    entries = []
    for name, value in parameters.items():
        if isinstance(value, bool):
            encoded = struct.pack(">B?", TYPE_BOOL, value)
        elif isinstance(value, int):
            encoded = struct.pack(">Bi", TYPE_INT, value)
        elif isinstance(value, float):
            encoded = struct.pack(">Bd", TYPE_DOUBLE, value)
        else:
            logger.warning("Unsupported value type for parameter %r", name)
            continue
        raw_name = name.encode("utf-8")
        if len(raw_name) > 255:
            raise ValueError(f"Parameter name too long: {name!r}")
        entries.append(struct.pack(">B", len(raw_name)) + raw_name + encoded)

    return HEADER + struct.pack(">H", len(entries)) + b"".join(entries)


def decode_params(data: bytes) -> dict[str, Any]:
    """Parse the `.param` binary format.

    Raises:
        SettingsFormatError: Bad header, truncated data or unknown type tag.
    """
    if len(data) < len(HEADER) or data[:6] != HEADER[:6]:
        raise SettingsFormatError("Invalid file format")

    offset = len(HEADER)

    def read(fmt: str) -> tuple:
        nonlocal offset
        size = struct.calcsize(fmt)
        if offset + size > len(data):
            raise SettingsFormatError("Unexpected end of parameter file")
        values = struct.unpack_from(fmt, data, offset)
        offset += size
        return values

    (count,) = read(">H")
    parameters: dict[str, Any] = {}
    for _ in range(count):
        (name_len,) = read(">B")
        (raw_name,) = read(f">{name_len}s")
        # Invalid UTF-8 decodes to replacement characters, as QString::fromUtf8 does.
        name = raw_name.decode("utf-8", errors="replace")
        (type_tag,) = read(">B")
        if type_tag == TYPE_INT:
            (value,) = read(">i")
        elif type_tag == TYPE_BOOL:
            (value,) = read(">?")
        elif type_tag == TYPE_DOUBLE:
            (value,) = read(">d")
        else:
            raise SettingsFormatError(f"Unsupported value type 0x{type_tag:02x} for parameter {name!r}")
        parameters[name] = value
    return parameters


def save_params(path: PathLike, parameters: Mapping[str, Any] | StackingParams) -> None:
    """Write parameters (a mapping or `StackingParams`) to a `.param` file."""
    if isinstance(parameters, StackingParams):
        parameters = parameters.to_param_dict()
    Path(path).write_bytes(encode_params(parameters))
    logger.info("Saved parameters to %s", path)


def load_params(path: PathLike) -> dict[str, Any]:
    """Read the raw name -> value mapping of a `.param` file."""
    return decode_params(Path(path).read_bytes())


def load_stacking_params(path: PathLike) -> StackingParams:
    """Read a `.param` file into `StackingParams`."""
    return StackingParams.from_param_dict(load_params(path))
