"""Pydantic models for JSON-RPC requests and responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.helpers.parsers import parse_hex_int, to_hex_block


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request model."""

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name to call")
    params: list[Any] = Field(
        default_factory=list, description="Method parameters"
    )
    id: int | str = Field(default=1, description="Request ID")


class EthBlockNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_blockNumber."""

    method: str = Field(default="eth_blockNumber", frozen=True)
    params: list[Any] = Field(default_factory=list, frozen=True)


class EthChainIdRequest(JsonRpcRequest):
    """JSON-RPC request for eth_chainId."""

    method: str = Field(default="eth_chainId", frozen=True)
    params: list[Any] = Field(default_factory=list, frozen=True)


class EthGetStorageAtRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getStorageAt."""

    method: str = Field(default="eth_getStorageAt", frozen=True)

    @classmethod
    def build(
        cls, address: str, slot: str, block_number: int | str, request_id: int = 1
    ) -> EthGetStorageAtRequest:
        """Build the request for a storage slot at a block."""
        return cls(params=[address, slot, to_hex_block(block_number)], id=request_id)


class EthCallRequest(JsonRpcRequest):
    """JSON-RPC request for eth_call."""

    method: str = Field(default="eth_call", frozen=True)

    @classmethod
    def build(
        cls, to: str, data: str, block_number: int | str = "latest", request_id: int = 1
    ) -> EthCallRequest:
        """Build a read-only call against a contract."""
        return cls(
            params=[{"to": to, "data": data}, to_hex_block(block_number)],
            id=request_id,
        )


class LogFilter(BaseModel):
    """Filter object for eth_getLogs."""

    model_config = ConfigDict(populate_by_name=True)

    from_block: int = Field(..., alias="fromBlock", ge=0)
    to_block: int = Field(..., alias="toBlock", ge=0)
    address: str
    topics: list[str | None] = Field(default_factory=list)

    def to_params(self) -> dict[str, Any]:
        """Serialize to the JSON-RPC filter object with hex block bounds."""
        return {
            "fromBlock": hex(self.from_block),
            "toBlock": hex(self.to_block),
            "address": self.address,
            "topics": self.topics,
        }


class EthGetLogsRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getLogs."""

    method: str = Field(default="eth_getLogs", frozen=True)

    @classmethod
    def build(cls, log_filter: LogFilter, request_id: int = 1) -> EthGetLogsRequest:
        """Build the request from a log filter."""
        return cls(params=[log_filter.to_params()], id=request_id)


class EthLog(BaseModel):
    """A log entry returned by eth_getLogs."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: str
    block_number: int = Field(..., alias="blockNumber")
    transaction_hash: str = Field(..., alias="transactionHash")
    log_index: int = Field(default=0, alias="logIndex")
    topics: list[str] = Field(default_factory=list)
    data: str = "0x"
    removed: bool = False

    @field_validator("block_number", "log_index", mode="before")
    @classmethod
    def _parse_quantity(cls, value: Any) -> int:
        if isinstance(value, str):
            return parse_hex_int(value)
        return value


class ChainInfo(BaseModel):
    """Result of chain detection."""

    chain_id: int | None = None
    name: str

    @property
    def is_known(self) -> bool:
        """Whether the node answered with a chain id."""
        return self.chain_id is not None


__all__ = [
    "ChainInfo",
    "EthBlockNumberRequest",
    "EthCallRequest",
    "EthChainIdRequest",
    "EthGetLogsRequest",
    "EthGetStorageAtRequest",
    "EthLog",
    "JsonRpcRequest",
    "LogFilter",
]
