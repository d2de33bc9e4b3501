"""Interfaces of the chain data sources used by the modules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Mapping, Sequence


class NotFoundError(LookupError):
    """Raised by a source when the requested item does not exist on chain."""


def is_not_found(error: BaseException) -> bool:
    """Tell whether error reports a missing item."""
    return isinstance(error, NotFoundError) or "NotFound" in str(error)


class GovSource(ABC):
    """Reads governance data at a given height."""

    @abstractmethod
    def proposal(self, height: int, proposal_id: int) -> Any:
        """Return the proposal having the given id."""

    @abstractmethod
    def proposal_deposit(self, height: int, proposal_id: int, depositor: str) -> Any:
        """Return the deposit made by depositor towards the proposal."""

    @abstractmethod
    def tally_result(self, height: int, proposal_id: int) -> Any:
        """Return the current tally of the proposal."""

    @abstractmethod
    def deposit_params(self, height: int) -> Any:
        """Return the deposit parameters."""

    @abstractmethod
    def voting_params(self, height: int) -> Any:
        """Return the voting parameters."""

    @abstractmethod
    def tally_params(self, height: int) -> Any:
        """Return the tally parameters."""


class MintSource(ABC):
    """Reads mint data at a given height."""

    @abstractmethod
    def get_inflation(self, height: int) -> Decimal:
        """Return the current inflation."""

    @abstractmethod
    def params(self, height: int) -> Mapping[str, Any]:
        """Return the mint parameters."""


class SlashingSource(ABC):
    """Reads slashing data at a given height."""

    @abstractmethod
    def get_signing_info(self, height: int, consensus_address: str) -> Any:
        """Return the signing info of the validator with the given consensus address."""

    @abstractmethod
    def get_signing_infos(self, height: int) -> Sequence[Any]:
        """Return the signing infos of all validators."""

    @abstractmethod
    def get_params(self, height: int) -> Mapping[str, Any]:
        """Return the slashing parameters."""


class StakingSource(ABC):
    """Reads staking data at a given height."""

    @abstractmethod
    def get_validator(self, height: int, operator_address: str) -> Any:
        """Return the validator having the given operator address."""

    @abstractmethod
    def get_validators_with_status(self, height: int, status: str) -> Sequence[Any]:
        """Return the validators with the given status; "" means all."""

    @abstractmethod
    def get_pool(self, height: int) -> Any:
        """Return the staking pool."""

    @abstractmethod
    def get_params(self, height: int) -> Mapping[str, Any]:
        """Return the staking parameters."""