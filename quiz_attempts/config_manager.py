"""
Configuration manager for attempt session and gateway settings.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import AttemptMode, GatewaySettings, SessionSettings


class ConfigManager:
    """Manages attempt session settings and remote service connection settings."""

    # Default configuration values
    DEFAULT_AUTO_SAVE_INTERVAL = 30
    DEFAULT_INCLUDE_CORRECTNESS = False
    DEFAULT_INCLUDE_CORRECT_ANSWER = False
    DEFAULT_INCLUDE_EXPLANATION = False
    DEFAULT_PAUSABLE_MODES = (AttemptMode.ONE_BY_ONE, AttemptMode.ALL_AT_ONCE)
    DEFAULT_COUNTDOWN_TICK = 1.0
    DEFAULT_BASE_URL = "http://localhost:8080/api"
    DEFAULT_REQUEST_TIMEOUT = 15.0

    # Validation limits
    MIN_AUTO_SAVE_INTERVAL = 5
    MAX_AUTO_SAVE_INTERVAL = 600  # 10 minutes
    MIN_REQUEST_TIMEOUT = 1
    MAX_REQUEST_TIMEOUT = 120

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ConfigManager":
        """
        Build a ConfigManager from a loaded configuration dictionary.

        Invalid values are logged and the defaults kept.

        Args:
            config: Dictionary with optional 'session' and 'gateway' sections

        Returns:
            Configured ConfigManager
        """
        manager = cls()
        session = config.get('session', {}) or {}
        gateway = config.get('gateway', {}) or {}

        results = []
        if 'auto_save_interval' in session:
            results.append(manager.set_auto_save_interval(session['auto_save_interval']))
        for flag in ('include_correctness', 'include_correct_answer', 'include_explanation'):
            if flag in session:
                results.append(manager.set_grading_flag(flag, session[flag]))
        if 'pausable_modes' in session:
            results.append(manager.set_pausable_modes(session['pausable_modes']))
        if 'countdown_tick' in session:
            results.append(manager.set_countdown_tick(session['countdown_tick']))

        if 'base_url' in gateway:
            results.append(manager.set_base_url(gateway['base_url']))
        if 'request_timeout' in gateway:
            results.append(manager.set_request_timeout(gateway['request_timeout']))
        if gateway.get('api_token'):
            manager._gateway_settings.api_token = gateway['api_token']

        for result in results:
            if not result['success']:
                manager.logger.warning(f"Ignoring configuration value: {result['error']}")
        return manager

    def get_session_settings(self) -> SessionSettings:
        """
        Get current session settings.

        Returns:
            Copy of the SessionSettings in effect
        """
        settings = self._session_settings
        return SessionSettings(
            auto_save_interval=settings.auto_save_interval,
            include_correctness=settings.include_correctness,
            include_correct_answer=settings.include_correct_answer,
            include_explanation=settings.include_explanation,
            pausable_modes=list(settings.pausable_modes),
            countdown_tick=settings.countdown_tick
        )

    def get_gateway_settings(self) -> GatewaySettings:
        """
        Get current gateway settings.

        Returns:
            Copy of the GatewaySettings in effect
        """
        settings = self._gateway_settings
        return GatewaySettings(
            base_url=settings.base_url,
            request_timeout=settings.request_timeout,
            api_token=settings.api_token
        )

    def set_auto_save_interval(self, interval: int) -> Dict[str, Any]:
        """
        Set how often unsynced answers are saved automatically.

        Args:
            interval: Seconds between auto-saves, or 0 to disable auto-save

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        try:
            if isinstance(interval, bool) or not isinstance(interval, int):
                error_msg = f"Auto-save interval must be an integer, got {type(interval).__name__}"
                self.logger.error(error_msg)
                return {
                    'success': False,
                    'error': error_msg,
                    'user_message': f"❌ Invalid input: Expected a number, got {type(interval).__name__}"
                }

            if interval == 0:
                self._session_settings.auto_save_interval = 0
                self.logger.info("Auto-save disabled")
                return {
                    'success': True,
                    'message': "Auto-save disabled",
                    'user_message': "✅ Auto-save turned off, answers are saved manually"
                }

            if interval < self.MIN_AUTO_SAVE_INTERVAL:
                error_msg = f"Auto-save interval must be at least {self.MIN_AUTO_SAVE_INTERVAL} seconds"
                self.logger.error(error_msg)
                return {
                    'success': False,
                    'error': error_msg,
                    'user_message': f"❌ Interval too short: Minimum is {self.MIN_AUTO_SAVE_INTERVAL} seconds"
                }

            if interval > self.MAX_AUTO_SAVE_INTERVAL:
                error_msg = f"Auto-save interval cannot exceed {self.MAX_AUTO_SAVE_INTERVAL} seconds"
                self.logger.error(error_msg)
                return {
                    'success': False,
                    'error': error_msg,
                    'user_message': f"❌ Interval too long: Maximum is {self.MAX_AUTO_SAVE_INTERVAL} seconds ({self.MAX_AUTO_SAVE_INTERVAL // 60} minutes)"
                }

            self._session_settings.auto_save_interval = interval
            self.logger.info(f"Auto-save interval set to {interval} seconds")
            return {
                'success': True,
                'message': f"Auto-save interval set to {interval} seconds",
                'user_message': f"✅ Answers will be saved every {interval} seconds"
            }

        except Exception as e:
            error_msg = f"Unexpected error setting auto-save interval: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ An unexpected error occurred while setting the auto-save interval"
            }

    def get_auto_save_interval(self) -> int:
        return self._session_settings.auto_save_interval

    def set_grading_flag(self, name: str, enabled: bool) -> Dict[str, Any]:
        """
        Set one of the per-answer grading feedback flags.

        Args:
            name: 'include_correctness', 'include_correct_answer' or 'include_explanation'
            enabled: Whether the server should return that feedback with each answer

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        valid_flags = ('include_correctness', 'include_correct_answer', 'include_explanation')
        if name not in valid_flags:
            error_msg = f"Unknown grading flag: {name}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Unknown setting: {name}"
            }

        if not isinstance(enabled, bool):
            error_msg = f"{name} must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        setattr(self._session_settings, name, enabled)
        state = "enabled" if enabled else "disabled"
        label = name.replace('include_', '').replace('_', ' ')
        self.logger.info(f"{name} {state}")
        return {
            'success': True,
            'message': f"{name} {state}",
            'user_message': f"✅ Answer feedback for {label} {state}"
        }

    def set_pausable_modes(self, modes: Iterable[Union[str, AttemptMode]]) -> Dict[str, Any]:
        """
        Set which attempt modes may be paused.

        Args:
            modes: Mode names or AttemptMode members

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(modes, (str, AttemptMode)):
            modes = [modes]
        try:
            parsed: List[AttemptMode] = []
            for mode in modes:
                parsed_mode = mode if isinstance(mode, AttemptMode) else AttemptMode(mode)
                if parsed_mode not in parsed:
                    parsed.append(parsed_mode)
        except (TypeError, ValueError) as e:
            error_msg = f"Invalid attempt mode in pausable modes: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid mode. Valid modes are: {', '.join(m.value for m in AttemptMode)}"
            }

        self._session_settings.pausable_modes = parsed
        names = ', '.join(m.value for m in parsed) or "none"
        self.logger.info(f"Pausable modes set to {names}")
        return {
            'success': True,
            'message': f"Pausable modes set to {names}",
            'user_message': f"✅ Attempts can be paused in: {names}"
        }

    def is_pausable(self, mode: AttemptMode) -> bool:
        return mode in self._session_settings.pausable_modes

    def set_countdown_tick(self, tick: float) -> Dict[str, Any]:
        if isinstance(tick, bool) or not isinstance(tick, (int, float)) or tick <= 0:
            error_msg = f"Countdown tick must be a positive number, got {tick!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Invalid countdown tick: Expected a positive number of seconds"
            }
        self._session_settings.countdown_tick = float(tick)
        return {
            'success': True,
            'message': f"Countdown tick set to {tick} seconds",
            'user_message': f"✅ Countdown ticks every {tick} seconds"
        }

    def set_base_url(self, base_url: str) -> Dict[str, Any]:
        """
        Set the attempt service base URL.

        Args:
            base_url: Absolute http(s) URL of the API root

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(base_url, str) or not base_url.strip():
            error_msg = "Base URL cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Service URL cannot be empty"
            }

        base_url = base_url.strip().rstrip('/')
        if not base_url.startswith(('http://', 'https://')):
            error_msg = f"Base URL must start with http:// or https://, got {base_url}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid service URL: {base_url}"
            }

        self._gateway_settings.base_url = base_url
        self.logger.info(f"Attempt service base URL set to {base_url}")
        return {
            'success': True,
            'message': f"Base URL set to {base_url}",
            'user_message': f"✅ Using attempt service at {base_url}"
        }

    def set_request_timeout(self, timeout: float) -> Dict[str, Any]:
        if (isinstance(timeout, bool) or not isinstance(timeout, (int, float))
                or not self.MIN_REQUEST_TIMEOUT <= timeout <= self.MAX_REQUEST_TIMEOUT):
            error_msg = (
                f"Request timeout must be between {self.MIN_REQUEST_TIMEOUT} and "
                f"{self.MAX_REQUEST_TIMEOUT} seconds, got {timeout!r}"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timeout must be between {self.MIN_REQUEST_TIMEOUT} and {self.MAX_REQUEST_TIMEOUT} seconds"
            }
        self._gateway_settings.request_timeout = float(timeout)
        self.logger.info(f"Request timeout set to {timeout} seconds")
        return {
            'success': True,
            'message': f"Request timeout set to {timeout} seconds",
            'user_message': f"✅ Requests time out after {timeout} seconds"
        }

    def set_api_token(self, token: Optional[str]) -> None:
        self._gateway_settings.api_token = token or None

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._session_settings = SessionSettings(
            auto_save_interval=self.DEFAULT_AUTO_SAVE_INTERVAL,
            include_correctness=self.DEFAULT_INCLUDE_CORRECTNESS,
            include_correct_answer=self.DEFAULT_INCLUDE_CORRECT_ANSWER,
            include_explanation=self.DEFAULT_INCLUDE_EXPLANATION,
            pausable_modes=list(self.DEFAULT_PAUSABLE_MODES),
            countdown_tick=self.DEFAULT_COUNTDOWN_TICK
        )
        self._gateway_settings = GatewaySettings(
            base_url=self.DEFAULT_BASE_URL,
            request_timeout=self.DEFAULT_REQUEST_TIMEOUT
        )
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        session = self._session_settings
        gateway = self._gateway_settings

        # Validate auto-save interval
        interval = session.auto_save_interval
        if (not isinstance(interval, int) or
                (interval != 0 and not self.MIN_AUTO_SAVE_INTERVAL <= interval <= self.MAX_AUTO_SAVE_INTERVAL)):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid auto-save interval: {interval}")

        # Validate grading flags
        for flag in ('include_correctness', 'include_correct_answer', 'include_explanation'):
            if not isinstance(getattr(session, flag), bool):
                validation_result["valid"] = False
                validation_result["issues"].append(f"Invalid {flag} setting: {getattr(session, flag)}")

        # Validate pausable modes
        if not all(isinstance(mode, AttemptMode) for mode in session.pausable_modes):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid pausable modes: {session.pausable_modes}")

        # Validate gateway
        if not isinstance(gateway.base_url, str) or not gateway.base_url.startswith(('http://', 'https://')):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid base URL: {gateway.base_url}")

        if not self.MIN_REQUEST_TIMEOUT <= gateway.request_timeout <= self.MAX_REQUEST_TIMEOUT:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid request timeout: {gateway.request_timeout}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        session = self._session_settings
        gateway = self._gateway_settings
        auto_save_str = (
            f"every {session.auto_save_interval} seconds"
            if session.auto_save_interval
            else "disabled"
        )
        feedback = [
            label for flag, label in (
                ('include_correctness', 'correctness'),
                ('include_correct_answer', 'correct answer'),
                ('include_explanation', 'explanation'),
            )
            if getattr(session, flag)
        ]
        pausable = ', '.join(mode.value for mode in session.pausable_modes) or "none"

        return (
            f"Attempt Settings:\n"
            f"• Auto-save: {auto_save_str}\n"
            f"• Answer feedback: {', '.join(feedback) or 'none'}\n"
            f"• Pausable modes: {pausable}\n"
            f"• Service: {gateway.base_url} (timeout {gateway.request_timeout}s, "
            f"{'authenticated' if gateway.api_token else 'anonymous'})"
        )


def load_config(path: Union[str, Path] = "config.json") -> Dict[str, Any]:
    """
    Load configuration from a JSON file, applying environment overrides.

    A missing file yields an empty configuration. The QUIZ_API_BASE_URL and
    QUIZ_API_TOKEN environment variables take precedence over the file.

    Raises:
        ValueError: If the file is not valid JSON
    """
    config_path = Path(path)
    config: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {config_path}: {e}") from e
    else:
        logging.getLogger(__name__).info(f"{config_path} not found, using default settings")

    gateway = config.setdefault('gateway', {})
    # Environment variables take precedence
    base_url = os.getenv('QUIZ_API_BASE_URL')
    if base_url:
        gateway['base_url'] = base_url
    token = os.getenv('QUIZ_API_TOKEN')
    if token:
        gateway['api_token'] = token

    return config


def setup_logging_from_config(config: Dict[str, Any]) -> None:
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper())

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_directory = log_config.get('log_directory')
    if log_directory:
        log_path = Path(log_directory)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / "attempts.log", encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
