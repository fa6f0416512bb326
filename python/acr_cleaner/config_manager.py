#!/usr/bin/env python3
"""
Configuration Manager for the ACR retention cleaner

This module handles loading and managing configuration from config.yaml
and environment variables. Command-line flags override both.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import yaml

from acr_cleaner.error_utils import ConfigValidationError

DELETION_MODES = ("bulk", "itemized")
MATCH_MODES = ("exact", "substring")
ON_MATCH_POLICIES = ("abort", "skip")


def _split_csv(value: Any) -> List[str]:
    """Accept a list or a comma-separated string of names."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


class ConfigManager:
    """Manages configuration for the retention cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "registry": {
                "name": "",
                "repository": "",
                "subscription": "",
                "login_server_suffix": ".azurecr.io",
            },
            "kubernetes": {"contexts": [], "all_contexts": False, "kubeconfig": ""},
            "retention": {"ago": "360d"},
            "deletion": {
                "mode": "bulk",
                "delay": 1.0,  # Seconds between itemized deletions
                "dry_run": False,
                "tag_filter": ".*",
                "purge_untagged": True,
            },
            "safety": {"match_mode": "exact", "on_match": "abort"},
            "analysis": {"max_workers": 4, "timeout": 300},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file {self.config_file}: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Registry configuration
    def get_registry_name(self) -> str:
        """Get registry name from environment or config"""
        return os.environ.get("ACR_REGISTRY") or self.config["registry"]["name"] or ""

    def get_repository(self) -> str:
        """Get repository name from environment or config"""
        return os.environ.get("ACR_REPOSITORY") or self.config["registry"]["repository"] or ""

    def get_subscription(self) -> Optional[str]:
        return os.environ.get("AZURE_SUBSCRIPTION_ID") or self.config["registry"]["subscription"] or None

    def get_login_server_suffix(self) -> str:
        return self.config["registry"]["login_server_suffix"] or ""

    # Kubernetes configuration
    def get_contexts(self) -> List[str]:
        """Get the cluster contexts to check, KUBE_CONTEXTS overriding config"""
        env_value = os.environ.get("KUBE_CONTEXTS")
        if env_value:
            return _split_csv(env_value)
        return _split_csv(self.config["kubernetes"]["contexts"])

    def get_all_contexts(self) -> bool:
        return bool(self.config["kubernetes"]["all_contexts"])

    def get_kubeconfig(self) -> Optional[str]:
        return os.environ.get("KUBECONFIG_PATH") or self.config["kubernetes"]["kubeconfig"] or None

    # Retention and deletion configuration
    def get_ago(self) -> str:
        return os.environ.get("RETENTION_AGO") or self.config["retention"]["ago"]

    def get_deletion_mode(self) -> str:
        return (os.environ.get("DELETION_MODE") or self.config["deletion"]["mode"]).lower()

    def get_delay(self) -> float:
        """Get the pause between itemized deletions, with type coercion"""
        delay = os.environ.get("DELETION_DELAY") or self.config["deletion"]["delay"]
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"deletion.delay must be a number of seconds, got: {delay} (type: {type(delay).__name__})"
            )

    def is_dry_run(self) -> bool:
        return bool(self.config["deletion"]["dry_run"])

    def get_tag_filter(self) -> str:
        return self.config["deletion"]["tag_filter"] or ".*"

    def get_purge_untagged(self) -> bool:
        return bool(self.config["deletion"]["purge_untagged"])

    # Safety configuration
    def get_match_mode(self) -> str:
        return str(self.config["safety"]["match_mode"]).lower()

    def get_on_match(self) -> str:
        return str(self.config["safety"]["on_match"]).lower()

    # Analysis configuration
    def get_max_workers(self) -> int:
        """Get max workers from config, with type coercion"""
        workers = self.config["analysis"]["max_workers"]
        try:
            return int(workers)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"max_workers must be an integer, got: {workers} (type: {type(workers).__name__})"
            )

    def get_timeout(self) -> int:
        """Get timeout for non-streaming az calls, with type coercion"""
        timeout = self.config["analysis"]["timeout"]
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        registry = self.get_registry_name()
        if registry and not self._is_valid_registry_name(registry):
            errors.append(f"Registry name '{registry}' contains invalid characters")

        repository = self.get_repository()
        if repository and not self._is_valid_repository_name(repository):
            errors.append(
                f"Repository name '{repository}' contains invalid characters (lowercase alphanumeric, '.', '_', '-' and '/' only)"
            )

        mode = self.get_deletion_mode()
        if mode not in DELETION_MODES:
            errors.append(f"deletion.mode must be one of {', '.join(DELETION_MODES)}, got: {mode}")

        match_mode = self.get_match_mode()
        if match_mode not in MATCH_MODES:
            errors.append(f"safety.match_mode must be one of {', '.join(MATCH_MODES)}, got: {match_mode}")

        on_match = self.get_on_match()
        if on_match not in ON_MATCH_POLICIES:
            errors.append(f"safety.on_match must be one of {', '.join(ON_MATCH_POLICIES)}, got: {on_match}")

        try:
            delay = self.get_delay()
            if delay < 0:
                errors.append(f"deletion.delay must be a non-negative number, got: {delay}")
            elif delay > 300:
                warnings.append(f"deletion.delay is very high ({delay}s), the sweep may take a long time")
        except ConfigValidationError as e:
            errors.append(e.message)

        try:
            max_workers = self.get_max_workers()
            if max_workers < 1:
                errors.append(f"max_workers must be a positive integer, got: {max_workers}")
        except ConfigValidationError as e:
            errors.append(e.message)

        try:
            timeout = self.get_timeout()
            if timeout < 1:
                errors.append(f"timeout must be a positive integer (seconds), got: {timeout}")
        except ConfigValidationError as e:
            errors.append(e.message)

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_registry_name(self, name: str) -> bool:
        """Validate registry name or login server format"""
        pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?$"
        return bool(re.match(pattern, name))

    def _is_valid_repository_name(self, name: str) -> bool:
        """Validate repository name format"""
        pattern = r"^[a-z0-9]([a-z0-9\._\-/]*[a-z0-9])?$"
        return bool(re.match(pattern, name))

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Config File: {self.config_file}")
        print(f"  Registry: {self.get_registry_name() or 'Not set'}")
        print(f"  Repository: {self.get_repository() or 'Not set'}")
        print(f"  Subscription: {self.get_subscription() or 'Default'}")
        print(f"  Login Server Suffix: {self.get_login_server_suffix()}")
        print(f"  Contexts: {', '.join(self.get_contexts()) or 'None'}")
        print(f"  All Contexts: {self.get_all_contexts()}")
        print(f"  Kubeconfig: {self.get_kubeconfig() or 'Default'}")
        print(f"  Retention Ago: {self.get_ago()}")
        print(f"  Deletion Mode: {self.get_deletion_mode()}")
        print(f"  Deletion Delay: {self.get_delay()}s")
        print(f"  Dry Run: {self.is_dry_run()}")
        print(f"  Match Mode: {self.get_match_mode()}")
        print(f"  On Image In Use: {self.get_on_match()}")
        print(f"  Max Workers: {self.get_max_workers()}")
        print(f"  Timeout: {self.get_timeout()}")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
