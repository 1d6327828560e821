#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Loading Utility for sqwcalc.

This module provides functions to load and validate a structure factor run
configuration from a YAML file.
"""
import yaml
import logging
from typing import Any, Dict

from pydantic import ValidationError

from .schema import SqwCalcConfig

logger = logging.getLogger(__name__)


def load_yaml(filepath: str) -> Dict[str, Any]:
    """
    Read a YAML file into a dictionary.

    Raises:
        FileNotFoundError: If the configuration file is not found.
        ValueError: If the YAML cannot be parsed or is not a mapping.
    """
    try:
        with open(filepath, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.error(f"Configuration file not found: {filepath}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}")
        raise ValueError(f"Invalid YAML format in {filepath}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {filepath} must contain a mapping at the top level.")
    return data


def load_config(filepath: str) -> SqwCalcConfig:
    """
    Load and validate a run configuration.

    Args:
        filepath (str): The path to the YAML configuration file.

    Returns:
        SqwCalcConfig: The validated configuration.

    Raises:
        FileNotFoundError: If the configuration file is not found.
        ValueError: If there's an error parsing the YAML or the content does
                    not match the schema.
    """
    logger.info(f"Loading configuration from: {filepath}")
    data = load_yaml(filepath)
    try:
        config = SqwCalcConfig.model_validate(data)
    except ValidationError as e:
        logger.error(f"Configuration {filepath} failed validation: {e}")
        raise ValueError(f"Invalid configuration in {filepath}:\n{e}") from e
    logger.info("Configuration loaded and validated.")
    return config
