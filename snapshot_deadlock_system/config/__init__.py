"""Configuration and strategy registration."""

from .detection_config import DetectionConfig, StrategyRegistry, STRATEGY_PRESETS, DEFAULT_THRESHOLDS

__all__ = ['DetectionConfig', 'StrategyRegistry', 'STRATEGY_PRESETS', 'DEFAULT_THRESHOLDS']
