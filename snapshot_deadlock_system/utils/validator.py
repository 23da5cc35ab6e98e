"""
Validation utilities and error types for the snapshot deadlock detection system.
"""

from typing import List, Dict, Any, Optional, Union
from pathlib import Path
import json


class ValidationError(Exception):
    """Custom exception for validation errors."""
    pass


class SnapshotIntegrityError(ValidationError):
    """
    Fatal integrity problem in a snapshot.

    Carries enough context for the caller to log and discard the offending
    snapshot instead of failing the whole service.
    """

    def __init__(self, message: str, snapshot_id: Optional[str] = None,
                 process_id: Optional[str] = None, entity_id: Optional[str] = None,
                 edge_id: Optional[str] = None, backtrace_id: Any = None):
        self.snapshot_id = snapshot_id
        self.process_id = process_id
        self.entity_id = entity_id
        self.edge_id = edge_id
        self.backtrace_id = backtrace_id
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        context = []
        if self.snapshot_id is not None:
            context.append(f"snapshot={self.snapshot_id}")
        if self.process_id is not None:
            context.append(f"process={self.process_id}")
        if self.entity_id is not None:
            context.append(f"entity={self.entity_id}")
        if self.edge_id is not None:
            context.append(f"edge={self.edge_id}")
        if self.backtrace_id is not None:
            context.append(f"backtrace={self.backtrace_id}")
        if not context:
            return f"[snapshot] {message}"
        return f"[snapshot] {message} ({', '.join(context)})"

    def context(self) -> Dict[str, Any]:
        return {
            'snapshot_id': self.snapshot_id,
            'process_id': self.process_id,
            'entity_id': self.entity_id,
            'edge_id': self.edge_id,
            'backtrace_id': self.backtrace_id,
        }


def is_valid_id(value: Any) -> bool:
    """True for positive integers (booleans are rejected)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class InputValidator:
    """
    Validates raw snapshot inputs for the detection system.
    """

    @staticmethod
    def validate_snapshot(snapshot: Dict[str, Any]) -> bool:
        """
        Validate the top-level shape of a raw snapshot.

        Args:
            snapshot: Decoded snapshot dictionary

        Returns:
            True if valid

        Raises:
            ValidationError: If the snapshot structure is invalid
        """
        if not isinstance(snapshot, dict):
            raise ValidationError("Snapshot must be a dictionary")

        processes = snapshot.get('processes')
        if not isinstance(processes, list):
            raise ValidationError("Snapshot must contain a 'processes' list")

        for i, proc in enumerate(processes):
            InputValidator.validate_process(proc, i)

        for key in ('frames', 'backtraces'):
            if key in snapshot and not isinstance(snapshot[key], list):
                raise ValidationError(f"Snapshot '{key}' must be a list")

        return True

    @staticmethod
    def validate_process(proc: Dict[str, Any], index: int = 0) -> bool:
        """
        Validate a single per-process snapshot entry.

        Raises:
            ValidationError: If the process entry is invalid
        """
        if not isinstance(proc, dict):
            raise ValidationError(f"Process at index {index} must be a dictionary")

        if 'process_id' not in proc:
            raise ValidationError(f"Process at index {index} must contain 'process_id'")

        body = proc.get('snapshot', proc)
        if not isinstance(body, dict):
            raise ValidationError(f"Process {proc['process_id']} snapshot must be a dictionary")

        for key in ('entities', 'edges', 'scopes'):
            value = body.get(key, [])
            if not isinstance(value, list):
                raise ValidationError(f"Process {proc['process_id']} '{key}' must be a list")

        for entity in body.get('entities', []):
            if not isinstance(entity, dict) or 'id' not in entity:
                raise ValidationError(f"Process {proc['process_id']} has an entity without 'id'")

        for edge in body.get('edges', []):
            if not isinstance(edge, dict) or 'src' not in edge or 'dst' not in edge:
                raise ValidationError(
                    f"Process {proc['process_id']} has an edge without 'src'/'dst'"
                )

        return True

    @staticmethod
    def validate_detection_config(config: Dict[str, Any]) -> bool:
        """
        Validate detection configuration.

        Args:
            config: Configuration dictionary

        Returns:
            True if valid

        Raises:
            ValidationError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ValidationError("Configuration must be a dictionary")

        strategies = config.get('enabled_strategies', [])
        if not isinstance(strategies, list):
            raise ValidationError("Enabled strategies must be a list")

        if 'thresholds' in config:
            thresholds = config['thresholds']
            if not isinstance(thresholds, dict):
                raise ValidationError("Thresholds must be a dictionary")

            for key, value in thresholds.items():
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                    raise ValidationError(f"Threshold '{key}' must be a non-negative number")

        severity_threshold = config.get('severity_threshold', 'WARN')
        if severity_threshold and str(severity_threshold).upper() not in ('WARN', 'DANGER'):
            raise ValidationError(f"Severity threshold '{severity_threshold}' must be one of: WARN, DANGER")

        group_mode = config.get('group_mode', 'none')
        if group_mode not in ('none', 'process', 'crate'):
            raise ValidationError(f"Group mode '{group_mode}' must be one of: none, process, crate")

        max_cycles = config.get('max_cycles', 1)
        if isinstance(max_cycles, bool) or not isinstance(max_cycles, int) or max_cycles < 1:
            raise ValidationError("max_cycles must be a positive integer")

        return True


class FileValidator:
    """
    Validates file inputs.
    """

    @staticmethod
    def validate_input_file(file_path: Union[str, Path]) -> bool:
        """
        Validate input file exists and is readable.

        Raises:
            ValidationError: If file is invalid
        """
        path = Path(file_path)

        if not path.exists():
            raise ValidationError(f"Input file does not exist: {file_path}")

        if not path.is_file():
            raise ValidationError(f"Path is not a file: {file_path}")

        if not path.stat().st_size > 0:
            raise ValidationError(f"Input file is empty: {file_path}")

        return True

    @staticmethod
    def validate_json_file(file_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Validate and parse JSON file.

        Returns:
            Parsed JSON data

        Raises:
            ValidationError: If JSON file is invalid
        """
        FileValidator.validate_input_file(file_path)

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON in file {file_path}: {str(e)}")
        except OSError as e:
            raise ValidationError(f"Error reading JSON file {file_path}: {str(e)}")


def validate_all_inputs(
    snapshot: Optional[Dict[str, Any]] = None,
    config: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Validate all inputs for deadlock detection.

    Args:
        snapshot: Optional raw snapshot to validate
        config: Optional configuration to validate

    Returns:
        True if all inputs are valid

    Raises:
        ValidationError: If any input is invalid
    """
    if snapshot is not None:
        InputValidator.validate_snapshot(snapshot)

    if config:
        InputValidator.validate_detection_config(config)

    return True
