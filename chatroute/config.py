"""
Configuration management for chatroute.

Loads the model catalog, plan availability, fallback policies, cost
thresholds, and classification patterns from JSON configuration files.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, List


class Config:
    """Configuration manager for the routing catalog and policy tables."""

    def __init__(self, config_path: str = None):
        """Initialize configuration.

        Args:
            config_path: Path to config directory. If None, uses defaults.
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or defaults."""
        if self.config_path and os.path.exists(os.path.join(self.config_path, 'config.json')):
            config_file = os.path.join(self.config_path, 'config.json')
            with open(config_file, 'r') as f:
                return json.load(f)
        else:
            defaults_path = Path(__file__).parent / 'defaults.json'
            with open(defaults_path, 'r', encoding='utf-8') as f:
                return json.load(f)

    def get_models(self) -> List[Dict[str, Any]]:
        """Get model descriptor definitions, in registry order."""
        return self.config.get('models', [])

    def get_plan_availability(self, region: str) -> Dict[str, List[str]]:
        """Get the plan → model id mapping for a region ('IN' or 'INTL')."""
        return self.config.get('plan_availability', {}).get(region, {})

    def get_default_model_ids(self) -> List[str]:
        """Get the model ids used when a plan has no availability entry."""
        return self.config.get('default_model_ids', [])

    def get_plan_policies(self) -> Dict[str, Dict[str, Any]]:
        """Get per-plan fallback policy definitions."""
        return self.config.get('plan_fallback_policies', {})

    def get_cost_thresholds(self) -> Dict[str, float]:
        """Get the cheap/medium/expensive cost ceilings (per 1M tokens)."""
        return self.config.get('cost_thresholds', {})

    def get_apex_budget_threshold(self) -> float:
        """Pressure below which APEX requests skip cost filtering."""
        return self.config.get('apex_budget_threshold', 0.9)

    def get_token_estimates(self) -> Dict[str, int]:
        """Get estimated tokens per complexity tier."""
        return self.config.get('token_estimates', {})

    def get_quality_scores(self) -> Dict[str, float]:
        """Get the baked-in quality score table used for quality-drop checks."""
        return self.config.get('quality_scores', {})

    def get_classification_rules(self) -> Dict[str, Any]:
        """Get classification rules and keywords."""
        return self.config.get('classification_rules', {})

    def get_code_indicators(self) -> List[str]:
        """Get regex patterns that indicate code in a message."""
        return self.get_classification_rules().get('code_indicators', [])

    def get_technical_terms(self) -> List[str]:
        """Get technical vocabulary terms."""
        return self.get_classification_rules().get('technical_terms', [])

    def get_analysis_phrases(self) -> List[str]:
        """Get phrases that indicate an analysis request."""
        return self.get_classification_rules().get('analysis_phrases', [])

    def get_specialization_patterns(self) -> Dict[str, List[str]]:
        """Get regex pattern sets per specialization tag."""
        return self.config.get('specialization_patterns', {})

    def get_high_stakes_patterns(self) -> List[str]:
        """Get regex patterns that flag high-stakes content."""
        return self.config.get('high_stakes_patterns', [])

    def save_config(self, config_path: str) -> None:
        """Save current configuration to file.

        Args:
            config_path: Path to config directory
        """
        os.makedirs(config_path, exist_ok=True)
        config_file = os.path.join(config_path, 'config.json')
        from .utils import atomic_write_json
        atomic_write_json(config_file, self.config)
