from typing import Dict, List, Any, Optional
import copy
import json

from ..core.base_detector import BaseDeadlockStrategy
from ..utils.logger import get_logger

logger = get_logger("config")


class StrategyRegistry:
    """Registry for managing snapshot analysis strategies"""

    def __init__(self):
        self.strategies: Dict[str, BaseDeadlockStrategy] = {}

    def register_strategy(self, name: str, strategy: BaseDeadlockStrategy):
        """
        Register an analysis strategy

        Per-strategy settings live in ``DetectionConfig.strategy_configs``.

        Args:
            name: Strategy name
            strategy: Strategy instance
        """
        self.strategies[name] = strategy

    def unregister_strategy(self, name: str):
        """Unregister a strategy"""
        self.strategies.pop(name, None)

    def get_strategy(self, name: str) -> Optional[BaseDeadlockStrategy]:
        """Get a strategy by name"""
        return self.strategies.get(name)

    def enable_strategy(self, name: str):
        if name in self.strategies:
            self.strategies[name].enabled = True

    def disable_strategy(self, name: str):
        if name in self.strategies:
            self.strategies[name].enabled = False

    def set_strategy_priority(self, name: str, priority: int):
        """Set strategy priority (higher = executed first)"""
        if name in self.strategies:
            self.strategies[name].priority = priority

    def get_strategies_by_priority(self) -> List[tuple]:
        """Get enabled strategies sorted by priority (highest first)"""
        strategy_items = [(name, strategy) for name, strategy in self.strategies.items() if strategy.enabled]
        return sorted(strategy_items, key=lambda x: x[1].priority, reverse=True)


DEFAULT_THRESHOLDS = {
    # Locks: held or waiting
    'lock_danger_secs': 5.0,
    'lock_warn_secs': 1.0,

    # Tasks
    'poll_danger_secs': 1.0,
    'poll_warn_secs': 0.1,
    'pending_unpolled_warn_secs': 30.0,

    # Threads sampled at the same location
    'thread_stuck_danger_samples': 10,
    'thread_stuck_warn_samples': 5,

    # Channels
    'oneshot_pending_warn_secs': 10.0,
    'once_cell_initializing_warn_secs': 5.0,

    # RPC
    'rpc_danger_secs': 10.0,
    'rpc_warn_secs': 2.0,

    # Shared-memory peers
    'heartbeat_danger_ms': 5000,
    'heartbeat_warn_ms': 2000,
}


class DetectionConfig:
    """Configuration for snapshot deadlock detection"""

    def __init__(self, config_dict: Dict = None):
        self.config = copy.deepcopy(config_dict) if config_dict else {}
        self._load_default_config()

    def _load_default_config(self):
        """Load default configuration values"""
        defaults = {
            # Global settings
            'log_level': 'INFO',
            'log_dir': None,

            # Reporting
            'severity_threshold': 'WARN',

            # Strategy settings
            'enabled_strategies': ['cycle_candidates', 'relationship_signals'],
            'strategy_priorities': {
                'cycle_candidates': 10,
                'relationship_signals': 8,
            },

            # Snapshot conversion
            'group_mode': 'none',
            'compose_ids': False,
            'require_backtraces': None,

            # Cycle analysis
            'high_wait_secs': 5.0,
            'max_cycles': 256,

            # View reduction
            'show_loners': True,
        }

        for key, value in defaults.items():
            if key not in self.config:
                self.config[key] = value

        thresholds = dict(DEFAULT_THRESHOLDS)
        thresholds.update(self.config.get('thresholds') or {})
        self.config['thresholds'] = thresholds

    def get(self, key: str, default=None):
        """Get configuration value"""
        return self.config.get(key, default)

    def set(self, key: str, value):
        """Set configuration value"""
        self.config[key] = value

    def update(self, config_dict: Dict):
        """Update configuration with new values; thresholds are merged key by key"""
        config_dict = copy.deepcopy(config_dict)
        thresholds = config_dict.pop('thresholds', None)
        self.config.update(config_dict)
        if thresholds:
            self.config['thresholds'].update(thresholds)

    def get_threshold(self, name: str) -> float:
        return self.config['thresholds'][name]

    @property
    def thresholds(self) -> Dict[str, float]:
        return self.config['thresholds']

    def get_strategy_config(self, strategy_name: str) -> Dict:
        """Get strategy-specific configuration"""
        strategy_configs = self.config.get('strategy_configs', {})
        return strategy_configs.get(strategy_name, {})

    def set_strategy_config(self, strategy_name: str, config: Dict):
        """Set strategy-specific configuration"""
        if 'strategy_configs' not in self.config:
            self.config['strategy_configs'] = {}
        self.config['strategy_configs'][strategy_name] = config

    def is_strategy_enabled(self, strategy_name: str) -> bool:
        return strategy_name in self.config.get('enabled_strategies', [])

    def get_strategy_priority(self, strategy_name: str) -> int:
        priorities = self.config.get('strategy_priorities', {})
        return priorities.get(strategy_name, 5)  # Default priority

    def get_severity_threshold(self) -> str:
        """Get minimum severity reported"""
        return self.config.get('severity_threshold', 'WARN')

    def to_dict(self) -> Dict:
        """Export configuration as dictionary"""
        return copy.deepcopy(self.config)

    @classmethod
    def from_dict(cls, config_dict: Dict) -> 'DetectionConfig':
        return cls(config_dict)

    def save_to_file(self, file_path: str):
        """Save configuration to JSON file"""
        with open(file_path, 'w') as f:
            json.dump(self.config, f, indent=2)

    @classmethod
    def load_from_file(cls, file_path: str) -> 'DetectionConfig':
        """Load configuration from JSON file, falling back to defaults if it is missing"""
        try:
            with open(file_path, 'r') as f:
                config_dict = json.load(f)
        except FileNotFoundError:
            logger.log_warning(f"Configuration file {file_path} not found, using defaults")
            return cls()
        return cls(config_dict)

    @classmethod
    def create_balanced_config(cls):
        """Create a balanced configuration preset"""
        config = cls()
        config.update(STRATEGY_PRESETS['balanced'])
        return config

    @classmethod
    def create_aggressive_config(cls):
        """Create an aggressive configuration preset"""
        config = cls()
        config.update(STRATEGY_PRESETS['aggressive'])
        return config

    @classmethod
    def create_conservative_config(cls):
        """Create a conservative configuration preset"""
        config = cls()
        config.update(STRATEGY_PRESETS['conservative'])
        return config

    @classmethod
    def from_preset(cls, name: str) -> 'DetectionConfig':
        config = cls()
        config.update(STRATEGY_PRESETS[name])
        return config


# Pre-configured detection presets
STRATEGY_PRESETS = {
    'aggressive': {
        'severity_threshold': 'WARN',
        'max_cycles': 1024,
        'high_wait_secs': 2.0,
    },

    'conservative': {
        'severity_threshold': 'DANGER',
        'max_cycles': 64,
    },

    'balanced': {
        'severity_threshold': 'WARN',
        'high_wait_secs': 5.0,
    },
}
