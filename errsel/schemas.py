"""
JSON Schemas for exported project validation.

These schemas define the required structure of project.yaml: data files,
output definitions and population parameter estimates.
"""

from typing import Any, Dict, List, Tuple

import jsonschema

ERROR_MODELS = ["constant", "proportional", "combined1", "combined2", "exponential"]
DISTRIBUTIONS = ["normal", "lognormal", "logitnormal"]

# Output definition: observed variable and the prediction that models it
OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "prediction"],
    "properties": {
        "name": {
            "type": "string",
            "description": "Observation column name (e.g. y1)"
        },
        "prediction": {
            "type": "string",
            "description": "Prediction column name (e.g. Cc)"
        },
        "type": {
            "type": "string",
            "enum": ["continuous", "categorical", "count", "event"]
        },
        "error_model": {"type": "string", "enum": ERROR_MODELS},
        "distribution": {"type": "string", "enum": DISTRIBUTIONS},
        "limits": {
            "type": "array",
            "items": {"type": "number"},
            "minItems": 2,
            "maxItems": 2
        },
        "error_parameters": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Names of the population estimates of a, b, c"
        }
    }
}

# Project schema for project.yaml
PROJECT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["name", "version", "data", "outputs"],
    "properties": {
        "name": {
            "type": "string",
            "description": "Project identifier"
        },
        "version": {
            "type": "string",
            "pattern": r"^\d+\.\d+\.\d+$",
            "description": "Semantic version (e.g., 1.0.0)"
        },
        "description": {"type": "string"},
        "software": {
            "type": "string",
            "description": "Engine the project was exported from"
        },
        "data": {
            "type": "object",
            "required": ["observations"],
            "properties": {
                "observations": {"type": "string"},
                "predictions": {"type": "string"},
                "simulated_predictions": {"type": "string"}
            }
        },
        "outputs": {
            "type": "array",
            "minItems": 1,
            "items": OUTPUT_SCHEMA
        },
        "population_parameters": {
            "type": "object",
            "additionalProperties": {"type": "number"}
        }
    }
}


def validate_against_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate data against a JSON schema.

    Returns:
        (is_valid, list_of_errors)
    """
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: e.json_path)
    if errors:
        return False, [f"{e.json_path}: {e.message}" for e in errors]
    return True, []
