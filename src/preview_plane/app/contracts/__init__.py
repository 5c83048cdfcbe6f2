"""Runtime contracts: generation, validation, and binding advice."""

from .builder import ContractOverrides, build_contract, defaults_for
from .runtime_contract import (
    CONTRACT_FILE_PATH,
    RuntimeContract,
    parse_contract_file,
    render_contract_json,
    validate_contract,
)
from .server_config import Advisory, advise, environment_setup_script

__all__ = [
    "Advisory",
    "CONTRACT_FILE_PATH",
    "ContractOverrides",
    "RuntimeContract",
    "advise",
    "build_contract",
    "defaults_for",
    "environment_setup_script",
    "parse_contract_file",
    "render_contract_json",
    "validate_contract",
]
