from schemas.market import (
    MarketConfig,
    PhaseConfig,
    RegimeConfig,
    PriceMoveConfig,
    PatternConfig,
    OrderFlowConfig,
    VolumeConfig,
    ExtremeEventConfig,
    ScenarioPhaseConfig,
    ScenarioConfig,
    MeanReversionConfig,
    IntradayConfig,
    StickyPriceConfig,
    RoundNumberConfig,
    IgnitionConfig,
    StopHuntConfig,
    MicrostructureConfig,
    validate_config,
)
from schemas.market import (
    Tick,
    ActivePatternState,
    ExtremeEventState,
    IgnitionState,
    StopHuntState,
    MicrostructureState,
    RegimeState,
    RegimeHistoryEntry,
    RngStates,
    EngineSnapshot,
    RegimeOutlook,
    RegimePreviewEntry,
)
from schemas.market import (
    SessionCreate,
    AdvanceRequest,
    NextSessionRequest,
    ExternalForceRequest,
    SessionState,
)

__all__ = [
    # Configuration
    "MarketConfig", "PhaseConfig", "RegimeConfig", "PriceMoveConfig",
    "PatternConfig", "OrderFlowConfig", "VolumeConfig",
    "ExtremeEventConfig", "ScenarioPhaseConfig", "ScenarioConfig", "MeanReversionConfig",
    "IntradayConfig", "StickyPriceConfig", "RoundNumberConfig", "IgnitionConfig",
    "StopHuntConfig", "MicrostructureConfig", "validate_config",
    # Engine state
    "Tick", "ActivePatternState", "ExtremeEventState", "IgnitionState", "StopHuntState",
    "MicrostructureState", "RegimeState", "RegimeHistoryEntry", "RngStates",
    "EngineSnapshot", "RegimeOutlook", "RegimePreviewEntry",
    # API
    "SessionCreate", "AdvanceRequest", "NextSessionRequest", "ExternalForceRequest", "SessionState",
]
