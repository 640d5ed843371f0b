"""
Configuration Validation Module
Validates required environment on startup
"""
import os
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    component: str
    setting: str
    is_valid: bool
    message: str


class ConfigValidator:
    """
    Validates service configuration at startup.

    Ensures the database credentials are present before the
    application starts accepting call events.
    """

    REQUIRED_ENV_VARS = {
        "database": [
            ("SUPABASE_URL", "Supabase database"),
            ("SUPABASE_SERVICE_KEY", "Supabase database"),
        ],
    }

    # Optional but recommended
    OPTIONAL_ENV_VARS = {
        "tools": [("TOOL_SECRET", "Assistant tool shared secret")],
    }

    def __init__(self, strict: bool = False):
        """
        Initialize validator.

        Args:
            strict: If True, treat warnings as errors
        """
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all configuration.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        for component, vars_list in self.REQUIRED_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add_error(component, env_var,
                        f"{description} requires {env_var} to be set")
                else:
                    self._add_success(component, env_var, f"{description} configured")

        for component, vars_list in self.OPTIONAL_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add_warning(component, env_var,
                        f"{description} not configured (tool endpoints are unauthenticated)")
                else:
                    self._add_success(component, env_var, f"{description} configured")

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _add_success(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(
            component=component,
            setting=setting,
            is_valid=True,
            message=message
        ))

    def _add_error(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(
            component=component,
            setting=setting,
            is_valid=False,
            message=message
        ))

    def _add_warning(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(
            component=component,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid]
        warnings = [r for r in self.results if r.is_valid and "WARNING" in r.message]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Configuration validated:")
            for r in successes:
                logger.info(f"  ✓ [{r.component}] {r.message}")

        for r in warnings:
            logger.warning(f"  ⚠ [{r.component}] {r.message}")

        if errors:
            logger.error("Configuration errors:")
            for r in errors:
                logger.error(f"  ✗ [{r.component}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_config_on_startup(strict: bool = False) -> None:
    """
    Validate configuration at startup.

    Args:
        strict: If True, fail on warnings too

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ConfigValidator(strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All configuration validated successfully")
