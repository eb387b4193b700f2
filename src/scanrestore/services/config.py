"""
Restoration Configuration and Data Types.

This module contains the typed parameter dataclasses for every restoration
command, the enumerations they use, and the boundary parser that turns a
flat string-keyed parameter map (as produced by a UI or a command line)
into those dataclasses.
"""

import logging
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from typing import Any

from scanrestore.utils.exceptions import InvalidInputError, UnsupportedConfigurationError

logger = logging.getLogger(__name__)


# ── Enumerations ──────────────────────────────────────────────────


class ProcessorCommand(Enum):
    """Commands the image processor can apply."""

    DESKEW = "Deskew"
    BINARIZE = "Binarize"
    BORDER_REMOVE = "BorderRemove"
    DESPECKLE = "Despeckle"
    PUNCH_HOLE_REMOVE = "PunchHoleRemove"
    SPLIT_PAGES = "SplitPages"
    LINES_REMOVE = "LinesRemove"
    ENHANCE = "Enhance"


class BinarizeMethod(Enum):
    THRESHOLD = "Threshold"
    ADAPTIVE = "Adaptive"
    SAUVOLA = "Sauvola"
    MAJORITY = "Majority"


class PreBinarizationMethod(Enum):
    NONE = "None"
    HOMOMORPHIC_RETINEX = "HomomorphicRetinex"


class RetinexOutputMode(Enum):
    LOG_HIGHPASS = "LogHighpass"
    EXP_RECONSTRUCT = "ExpReconstruct"


class DeskewAlgorithm(Enum):
    AUTO = "Auto"
    BY_BORDERS = "ByBorders"
    HOUGH = "Hough"
    PROJECTION = "Projection"
    PCA = "PCA"


class AdaptiveMethod(Enum):
    MEAN = "Mean"
    GAUSSIAN = "Gaussian"


class RotationCropMode(Enum):
    KEEP_CANVAS = "KeepCanvas"  # grown canvas, nothing clipped
    ORIGINAL_SIZE = "OriginalSize"  # crop/pad to W×H centered on content
    CONTENT = "Content"  # crop to the non-background bounding box


class BorderRemovalAlgorithm(Enum):
    AUTO = "Auto"
    BY_CONTRAST = "ByContrast"
    MANUAL = "Manual"


class BorderRemovalMode(Enum):
    CROP = "Crop"  # canonical
    FILL = "Fill"  # legacy alternative


class DespeckleMethod(Enum):
    REMOVE_ALL = "RemoveAll"
    PRESERVE_PUNCTUATION = "PreservePunctuation"


class PunchShape(Enum):
    CIRCLE = "Circle"
    RECT = "Rect"
    BOTH = "Both"


class LineOrientation(Enum):
    HORIZONTAL = "Horizontal"
    VERTICAL = "Vertical"
    BOTH = "Both"


class EnhanceMethod(Enum):
    CLAHE = "Clahe"
    RETINEX = "Retinex"


class TiffCompression(Enum):
    NONE = "None"
    CCITT_G3 = "CCITT G3"
    CCITT_G4 = "CCITT G4"
    LZW = "LZW"
    DEFLATE = "Deflate"
    JPEG = "JPEG"
    PACKBITS = "PackBits"


def _param(default: Any, key: str, **kwargs: Any) -> Any:
    """Dataclass field carrying the external parameter-map key and bounds."""
    return field(default=default, metadata={"key": key, **kwargs})


# ── Binarization ─────────────────────────────────────────────────


@dataclass
class BinarizeParameters:
    """Parameters for the binarize command.

    Attributes:
        method: Thresholding algorithm
        threshold: Global cutoff for Threshold and Majority
        block_size: Adaptive block size; 0 picks min(W,H)/30 clamped to 3..201
        mean_c: Constant subtracted from the adaptive local mean
        adaptive_method: Mean or Gaussian-weighted local window
        use_gaussian: Legacy switch, True selects the Gaussian window
        use_morphology: Elliptic open after adaptive thresholding
        sauvola_window: Sauvola window (forced odd)
        sauvola_k: Sauvola sensitivity
        sauvola_r: Dynamic range of the standard deviation
        pencil_stroke_boost: Margin added to the Sauvola threshold
    """

    method: BinarizeMethod = _param(BinarizeMethod.THRESHOLD, "method")

    # === Threshold / Majority ===
    threshold: int = _param(128, "threshold", low=0, high=255)
    majority_offset: int = _param(20, "majorityOffset", low=0, high=128)

    # === Adaptive ===
    block_size: int = _param(0, "blockSize", low=0)
    mean_c: float = _param(14.0, "meanC")
    adaptive_method: AdaptiveMethod = _param(AdaptiveMethod.MEAN, "adaptiveMethod")
    use_gaussian: bool = _param(False, "useGaussian")  # True forces GAUSSIAN
    use_morphology: bool = _param(False, "useMorphology")
    morph_kernel: int = _param(3, "morphKernelBinarize", low=1)
    morph_iterations: int = _param(1, "morphIterationsBinarize", low=1)

    # === Sauvola ===
    sauvola_window: int = _param(25, "sauvolaWindowSize", low=1)
    sauvola_k: float = _param(0.34, "sauvolaK")
    sauvola_r: float = _param(180.0, "sauvolaR", low=1e-6)
    sauvola_use_clahe: bool = _param(False, "sauvolaUseClahe")
    sauvola_clahe_clip: float = _param(12.0, "sauvolaClaheClip", low=0.0)
    sauvola_clahe_grid: int = _param(8, "sauvolaClaheGridSize", low=1)
    sauvola_morph_radius: int = _param(0, "sauvolaMorphRadius", low=0)
    pencil_stroke_boost: int = _param(0, "pencilStrokeBoost")


@dataclass
class PreBinarizationParameters:
    """Optional illumination normalization applied before thresholding."""

    method: PreBinarizationMethod = _param(PreBinarizationMethod.NONE, "preMethod")
    output_mode: RetinexOutputMode = _param(RetinexOutputMode.LOG_HIGHPASS, "retinexOutputMode")
    use_lab_l: bool = _param(True, "useLabLChannel")  # False = plain gray
    sigma: float = _param(50.0, "homomorphicSigma", low=1e-3)
    gamma_high: float = _param(1.6, "homomorphicGammaHigh")
    gamma_low: float = _param(0.7, "homomorphicGammaLow")
    eps: float = _param(1e-6, "homomorphicEps", low=1e-12)
    robust_normalize: bool = _param(True, "robustNormalize")
    p_low: float = _param(0.5, "pLow", low=0.0, high=100.0)  # percent
    p_high: float = _param(99.5, "pHigh", low=0.0, high=100.0)  # percent
    hist_bins: int = _param(2048, "histBins", low=2)
    exp_clamp_abs: float = _param(4.0, "expClampAbs", low=0.0)
    apply_clahe: bool = _param(False, "homomorphicApplyClahe")
    clahe_clip: float = _param(2.0, "homomorphicClaheClipLimit", low=0.0)
    clahe_tile: int = _param(8, "homomorphicClaheTileSize", low=1)

    def validate(self) -> None:
        _validate_ranges(self)
        if self.p_low >= self.p_high:
            raise InvalidInputError("pLow", self.p_low, "must be below pHigh")


# ── Deskew ───────────────────────────────────────────────────────


@dataclass
class DeskewParameters:
    """Parameters for the deskew command."""

    algorithm: DeskewAlgorithm = _param(DeskewAlgorithm.AUTO, "deskewAlgorithm")
    canny_low: int = _param(50, "cannyTresh1", low=0)
    canny_high: int = _param(150, "cannyTresh2", low=0)
    morph_kernel: int = _param(5, "morphKernel", low=1)
    hough_threshold: int = _param(80, "houghTreshold", low=1)
    min_line_length: int = _param(100, "minLineLength", low=1)
    max_line_gap: int = _param(20, "maxLineGap", low=0)
    min_area_fraction: float = _param(0.002, "minAreaFraction", low=0.0, high=1.0)
    projection_range: float = _param(15.0, "projectionRange", low=0.0, high=45.0)
    projection_coarse_step: float = _param(1.0, "projectionCoarseStep", low=1e-3)
    projection_fine_step: float = _param(0.2, "projectionFineStep", low=1e-3)
    crop_mode: RotationCropMode = _param(RotationCropMode.KEEP_CANVAS, "cropMode")


# ── Border removal ───────────────────────────────────────────────


@dataclass
class BorderRemovalParameters:
    """Parameters for the border removal command.

    Attributes:
        algorithm: Auto (component analysis), ByContrast (row/column scan)
            or Manual (fixed margins)
        mode: Crop to the clean region (canonical) or Fill the artifacts
        dark_threshold: Gray level below which pixels count as scanner black
        auto_threshold: Estimate dark_threshold from the image instead
        min_area_px: Area that alone marks an edge component as artifact
        min_span_fraction: Share of the touched side a component must span
        solidity_threshold: Area / bbox-area above which a component is solid
        min_depth_fraction: Inward depth, as fraction of min(W,H)
        feather_px: Dilation applied to the artifact mask
    """

    algorithm: BorderRemovalAlgorithm = _param(BorderRemovalAlgorithm.AUTO, "borderRemovalAlgorithm")
    mode: BorderRemovalMode = _param(BorderRemovalMode.CROP, "borderRemovalMode")

    # === Auto ===
    dark_threshold: int = _param(40, "darkThreshold", low=0, high=255)
    auto_threshold: bool = _param(False, "autoThresh")
    margin_percent: int = _param(10, "marginPercent", low=0, high=49)
    shift_factor: float = _param(0.25, "shiftFactor", low=-0.5, high=0.5)
    min_area_px: int = _param(2000, "minAreaPx", low=0)
    min_span_fraction: float = _param(0.6, "minSpanFraction", low=0.0, high=1.0)
    solidity_threshold: float = _param(0.6, "solidityThreshold", low=0.0, high=1.0)
    min_depth_fraction: float = _param(0.05, "minDepthFraction", low=0.0, high=1.0)
    feather_px: int = _param(12, "featherPx", low=0)
    use_telea_hybrid: bool = _param(True, "useTeleaHybrid")

    # === ByContrast ===
    thresh_frac: float = _param(0.40, "treshFrac", low=0.0, high=1.0)
    contrast_thr: int = _param(50, "contrastThr", low=0, high=255)
    central_sample: float = _param(0.10, "centralSample", low=0.01, high=1.0)
    max_remove_frac: float = _param(0.45, "maxRemoveFrac", low=0.0, high=0.5)

    # === Manual ===
    manual_top: int = _param(0, "manualTop", low=0)
    manual_bottom: int = _param(0, "manualBottom", low=0)
    manual_left: int = _param(0, "manualLeft", low=0)
    manual_right: int = _param(0, "manualRight", low=0)
    manual_cut_debug: bool = _param(False, "manualCutDebug")


# ── Despeckle ────────────────────────────────────────────────────


@dataclass
class DespeckleSettings:
    """Parameters for the despeckle command."""

    method: DespeckleMethod = _param(DespeckleMethod.REMOVE_ALL, "despeckleMethod")
    small_area_relative: bool = _param(True, "smallAreaRelative")
    small_area_multiplier: float = _param(0.25, "smallAreaMultiplier", low=0.0)
    small_area_absolute_px: int = _param(64, "smallAreaAbsolutePx", low=0)
    max_dot_height_fraction: float = _param(0.35, "maxDotHeightFraction", low=0.0)
    proximity_radius_fraction: float = _param(0.8, "proximityRadiusFraction", low=0.0)
    squareness_tolerance: float = _param(0.6, "squarenessTolerance", low=0.0, high=1.0)
    keep_clusters: bool = _param(True, "keepClusters")
    use_dilate_before_cc: bool = _param(True, "useDilateBeforeCC")
    dilate_kernel: str = _param("1x3", "dilateKernel")
    dilate_iter: int = _param(1, "dilateIter", low=0)

    # === Dust pre-clean ===
    enable_dust_removal: bool = _param(False, "enableDustRemoval")
    dust_median_ksize: int = _param(3, "dustMedianKsize", low=1)
    dust_open_kernel: int = _param(3, "dustOpenKernel", low=1)
    dust_open_iter: int = _param(1, "dustOpenIter", low=0)
    enable_dust_shape_filter: bool = _param(False, "enableDustShapeFilter")
    dust_min_solidity: float = _param(0.6, "dustMinSolidity", low=0.0, high=1.0)
    dust_max_aspect_ratio: float = _param(3.0, "dustMaxAspectRatio", low=1.0)

    show_debug: bool = _param(False, "showDespeckleDebug")

    def validate(self) -> None:
        _validate_ranges(self)
        if self.dilate_kernel not in ("1x3", "3x1", "3x3"):
            raise UnsupportedConfigurationError(
                "dilateKernel", self.dilate_kernel, ["1x3", "3x1", "3x3"]
            )


# ── Punch holes ──────────────────────────────────────────────────


@dataclass(frozen=True)
class PunchSpec:
    """Nominal geometry of one kind of punch hole.

    ``size_tolerance`` only widens the accepted size upwards: holes smaller
    than the nominal size are never matched.
    """

    shape: PunchShape
    diameter: int = 20
    width: int = 20
    height: int = 20
    density: float = 0.5  # >= 0.5 expects a hole darker than the paper
    size_tolerance: float = 0.4


@dataclass(frozen=True)
class EdgeOffsets:
    """Width in pixels of the search band along each image edge."""

    top: int = 100
    bottom: int = 100
    left: int = 100
    right: int = 100


@dataclass
class PunchHoleParameters:
    """Parameters for the punch-hole removal command."""

    shape: PunchShape = _param(PunchShape.CIRCLE, "punchShape")
    diameter: int = _param(20, "diameter", low=1)
    width: int = _param(20, "width", low=1)
    height: int = _param(20, "height", low=1)
    density: float = _param(0.5, "density", low=0.0, high=1.0)
    size_tolerance: float = _param(0.4, "sizeTolerance", low=0.0)
    roundness: float = _param(0.9, "roundness", low=0.0)
    fill_ratio: float = _param(0.9, "fillRatio", low=0.0, high=1.0)
    top_offset: int = _param(100, "topOffset", low=0)
    bottom_offset: int = _param(100, "bottomOffset", low=0)
    left_offset: int = _param(100, "leftOffset", low=0)
    right_offset: int = _param(100, "rightOffset", low=0)

    def specs(self) -> list[PunchSpec]:
        """Expand the shape selection into one spec per searched shape."""
        shapes = [PunchShape.CIRCLE, PunchShape.RECT] if self.shape == PunchShape.BOTH else [self.shape]
        return [
            PunchSpec(
                shape=s,
                diameter=self.diameter,
                width=self.width,
                height=self.height,
                density=self.density,
                size_tolerance=self.size_tolerance,
            )
            for s in shapes
        ]

    def offsets(self) -> EdgeOffsets:
        return EdgeOffsets(
            top=self.top_offset,
            bottom=self.bottom_offset,
            left=self.left_offset,
            right=self.right_offset,
        )


# ── Page splitting ───────────────────────────────────────────────


@dataclass
class SplitterSettings:
    """Parameters for gutter detection and page splitting."""

    # === Search band (fraction of width) ===
    central_band_start: float = _param(0.35, "centralBandStart", low=0.0, high=1.0)
    central_band_end: float = _param(0.65, "centralBandEnd", low=0.0, high=1.0)
    pad_px: int = _param(24, "padPx", low=0)
    analysis_max_width: int = _param(1400, "analysisMaxWidth", low=64)

    # === Ink mask ===
    use_clahe: bool = _param(True, "useClahe")
    clahe_clip_limit: float = _param(2.0, "claheClipLimit", low=0.0)
    clahe_tile_grid: int = _param(8, "claheTileGrid", low=1)
    adaptive_block_size: int = _param(31, "adaptiveBlockSize", low=3)
    adaptive_c: float = _param(10.0, "adaptiveC")
    close_kernel_width_frac: float = _param(0.025, "closeKernelWidthFrac", low=0.0)
    close_kernel_height_px: int = _param(3, "closeKernelHeightPx", low=1)
    smooth_window_px: int = _param(41, "smoothWindowPx", low=1)

    # === Confidence ===
    min_confidence: float = _param(0.28, "minConfidence", low=0.0, high=1.0)
    throw_if_low_confidence: bool = _param(False, "throwIfLowConfidence")

    # === Lab confirmation ===
    use_lab_confirmation: bool = _param(True, "useLabConfirmation")
    lab_gutter_half_width_px: int = _param(18, "labGutterHalfWidthPx", low=1)
    lab_neighbor_width_px: int = _param(70, "labNeighborWidthPx", low=1)
    min_l_diff: float = _param(6.0, "minLDiff")
    max_gutter_std_ratio: float = _param(0.88, "maxGutterStdRatio", low=1e-6)
    weight_projection: float = _param(0.70, "weightProjection", low=0.0)
    weight_lab: float = _param(0.30, "weightLab", low=0.0)

    produce_debug_overlay: bool = _param(False, "produceDebugOverlay")

    def validate(self) -> None:
        _validate_ranges(self)
        if self.central_band_start >= self.central_band_end:
            raise InvalidInputError(
                "centralBandStart", self.central_band_start, "must be below centralBandEnd"
            )


# ── Line removal ─────────────────────────────────────────────────


@dataclass
class LinesRemoveParameters:
    """Parameters for removing long scanner stripes near the page edges.

    Attributes:
        line_width_px: Expected stroke width of a stripe
        min_length_fraction: Minimum stripe length as a fraction of the
            image side it runs along, in (0, 1]
        orientation: Stripe direction to search
        offset_start_px: How far from the edge a stripe may start
        match_color: Only accept stripes close to line_color
        color_tolerance: Per-channel distance accepted by match_color
    """

    line_width_px: int = _param(1, "lineWidthPx", low=1)
    min_length_fraction: float = _param(0.5, "minLengthFraction", low=0.0, high=1.0)
    orientation: LineOrientation = _param(LineOrientation.VERTICAL, "orientation")
    offset_start_px: int = _param(0, "offsetStartPx", low=0)
    match_color: bool = _param(False, "matchLineColor")
    line_color_red: int = _param(0, "lineColorRed", low=0, high=255)
    line_color_green: int = _param(0, "lineColorGreen", low=0, high=255)
    line_color_blue: int = _param(0, "lineColorBlue", low=0, high=255)
    color_tolerance: int = _param(40, "colorTolerance", low=0, high=255)

    def validate(self) -> None:
        _validate_ranges(self)
        if self.min_length_fraction <= 0.0:
            raise InvalidInputError(
                "minLengthFraction", self.min_length_fraction, "must be in (0, 1]"
            )

    def line_color_bgr(self) -> tuple[int, int, int]:
        return (self.line_color_blue, self.line_color_green, self.line_color_red)


# ── Enhancement ──────────────────────────────────────────────────


@dataclass
class EnhanceParameters:
    """Parameters for the contrast enhancement command."""

    method: EnhanceMethod = _param(EnhanceMethod.CLAHE, "enhanceMethod")
    clip_limit: float = _param(2.0, "claheClipLimit", low=0.0)
    grid_size: int = _param(8, "claheGridSize", low=1)
    retinex_sigma: float = _param(50.0, "retinexSigma", low=1e-3)


# ── Validation and parsing ───────────────────────────────────────


def _validate_ranges(params: Any) -> None:
    """Check every numeric field against its declared low/high bounds."""
    for f in fields(params):
        low = f.metadata.get("low")
        high = f.metadata.get("high")
        if low is None and high is None:
            continue
        value = getattr(params, f.name)
        if low is not None and value < low:
            raise InvalidInputError(f.metadata.get("key", f.name), value, f"must be >= {low}")
        if high is not None and value > high:
            raise InvalidInputError(f.metadata.get("key", f.name), value, f"must be <= {high}")


def validate_parameters(params: Any) -> None:
    """Validate a parameter dataclass, using its own validate() when present."""
    custom = getattr(params, "validate", None)
    if callable(custom):
        custom()
    else:
        _validate_ranges(params)


def _normalize_token(text: str) -> str:
    return "".join(ch for ch in text.lower() if ch.isalnum())


def parse_enum(enum_cls: type[Enum], value: Any, setting_name: str) -> Enum:
    """Resolve an enum member from a member, its value or a loose spelling.

    "By Contrast", "by_contrast" and "ByContrast" all resolve to the same
    member.

    Raises:
        UnsupportedConfigurationError: When nothing matches.
    """
    if isinstance(value, enum_cls):
        return value
    wanted = _normalize_token(str(value))
    for member in enum_cls:
        if wanted in (_normalize_token(member.value), _normalize_token(member.name)):
            return member
    raise UnsupportedConfigurationError(setting_name, value, [m.value for m in enum_cls])


def _to_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise InvalidInputError(key, value, "expected a boolean")


def _to_number(value: Any, key: str, kind: type) -> int | float:
    try:
        if kind is int:
            return int(round(float(value)))
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(key, value, f"expected {kind.__name__}") from None


def _coerce(value: Any, target: Any, key: str) -> Any:
    if isinstance(target, type) and issubclass(target, Enum):
        return parse_enum(target, value, key)
    if target is bool:
        return _to_bool(value, key)
    if target in (int, float):
        return _to_number(value, key, target)
    return str(value)


def build_parameters(cls: type, mapping: dict[str, Any] | None, by_name: bool = True) -> Any:
    """Create a parameter dataclass from a string-keyed map.

    Keys are matched against each field's external key (camelCase) and,
    with ``by_name``, against the field name itself. Unknown keys are ignored.

    Args:
        cls: Parameter dataclass type
        mapping: Flat map of raw values (str, int, float or bool)
        by_name: Also accept Python field names as keys

    Returns:
        A validated instance of ``cls``.
    """
    mapping = mapping or {}
    by_key = {}
    hints = {}
    for f in fields(cls):
        hints[f.name] = f.type if not isinstance(f.type, str) else _resolve_hint(cls, f)
        by_key[f.metadata.get("key", f.name)] = f.name
        if by_name:
            by_key.setdefault(f.name, f.name)

    kwargs: dict[str, Any] = {}
    for raw_key, raw_value in mapping.items():
        if raw_key is None:
            continue
        name = by_key.get(str(raw_key))
        if name is None:
            logger.debug(f"Ignoring unknown parameter '{raw_key}' for {cls.__name__}")
            continue
        kwargs[name] = _coerce(raw_value, hints[name], str(raw_key))

    params = cls(**kwargs)
    validate_parameters(params)
    return params


def _resolve_hint(cls: type, f: Any) -> Any:
    """Resolve a string annotation from the defaults when needed."""
    if f.default is not MISSING:
        return type(f.default)
    return str


_COMMAND_PARAMETERS: dict[ProcessorCommand, type] = {
    ProcessorCommand.DESKEW: DeskewParameters,
    ProcessorCommand.BORDER_REMOVE: BorderRemovalParameters,
    ProcessorCommand.DESPECKLE: DespeckleSettings,
    ProcessorCommand.PUNCH_HOLE_REMOVE: PunchHoleParameters,
    ProcessorCommand.SPLIT_PAGES: SplitterSettings,
    ProcessorCommand.LINES_REMOVE: LinesRemoveParameters,
    ProcessorCommand.ENHANCE: EnhanceParameters,
}

_COMMAND_ALIASES = {
    "bordersremove": ProcessorCommand.BORDER_REMOVE,
    "borders": ProcessorCommand.BORDER_REMOVE,
    "punchholesremove": ProcessorCommand.PUNCH_HOLE_REMOVE,
    "punchholes": ProcessorCommand.PUNCH_HOLE_REMOVE,
    "pagesplit": ProcessorCommand.SPLIT_PAGES,
    "split": ProcessorCommand.SPLIT_PAGES,
    "linesremove": ProcessorCommand.LINES_REMOVE,
    "removelines": ProcessorCommand.LINES_REMOVE,
    "lines": ProcessorCommand.LINES_REMOVE,
}


def parse_command(value: Any) -> ProcessorCommand:
    """Resolve a ProcessorCommand from its name or a known alias."""
    if isinstance(value, ProcessorCommand):
        return value
    alias = _COMMAND_ALIASES.get(_normalize_token(str(value)))
    if alias is not None:
        return alias
    return parse_enum(ProcessorCommand, value, "command")


@dataclass
class BinarizeRequest:
    """Binarize parameters together with the optional pre-stage."""

    params: BinarizeParameters = field(default_factory=BinarizeParameters)
    pre: PreBinarizationParameters = field(default_factory=PreBinarizationParameters)


def parse_parameters(command: ProcessorCommand | str, mapping: dict[str, Any] | None) -> Any:
    """Parse the flat parameter map of a command into its typed parameters.

    The binarize command yields a BinarizeRequest because its map carries
    both the thresholding and the pre-binarization keys.

    Raises:
        InvalidInputError: For values that cannot be coerced or are out of range.
        UnsupportedConfigurationError: For unknown commands or enum values.
    """
    command = parse_command(command)
    if command == ProcessorCommand.BINARIZE:
        return BinarizeRequest(
            params=build_parameters(BinarizeParameters, mapping),
            pre=build_parameters(PreBinarizationParameters, mapping, by_name=False),
        )
    return build_parameters(_COMMAND_PARAMETERS[command], mapping)
