"""
podium.ledger.chain — Transaction Receipt Lookup & Log Decoding
================================================================

Low-level access to the chain, used only by the repair path.  When a
projected vote has lost its brand links, the indexer's decoded view can't
be trusted for that row, so we go back to the raw receipt
(``eth_getTransactionReceipt``) and decode the ``PodiumCreated`` log
against its ABI:

    event PodiumCreated(
        address indexed voter,
        uint256 indexed fid,
        uint256 indexed day,
        uint16[3] brandIds,
        uint256 cost
    )

A log only counts when it was emitted by the configured contract and its
topic0 is the keccak256 of that signature.  Receipt formatting and ABI
decoding are done by :mod:`web3`; the JSON-RPC requests themselves go out
over :mod:`httpx` through :class:`HttpxProvider`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from eth_abi.abi import default_codec
from eth_abi.codec import ABICodec
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3
from web3._utils.events import get_event_data
from web3.exceptions import MismatchedABI, TransactionNotFound
from web3.providers.base import JSONBaseProvider
from web3.types import RPCEndpoint, RPCResponse

from podium.engine.records import PodiumLog

logger = logging.getLogger(__name__)

PODIUM_CREATED_SIGNATURE = "PodiumCreated(address,uint256,uint256,uint16[3],uint256)"
PODIUM_CREATED_TOPIC = HexBytes(Web3.keccak(text=PODIUM_CREATED_SIGNATURE))

PODIUM_CREATED_ABI: dict[str, Any] = {
    "type": "event",
    "name": "PodiumCreated",
    "anonymous": False,
    "inputs": [
        {"name": "voter", "type": "address", "indexed": True},
        {"name": "fid", "type": "uint256", "indexed": True},
        {"name": "day", "type": "uint256", "indexed": True},
        {"name": "brandIds", "type": "uint16[3]", "indexed": False},
        {"name": "cost", "type": "uint256", "indexed": False},
    ],
}

# get_event_data copies these into its result; raw logs may omit them.
_LOG_META_KEYS = ("logIndex", "transactionIndex", "transactionHash", "blockHash", "blockNumber")


def decode_podium_log(
    log: dict[str, Any],
    contract_address: str,
    codec: ABICodec = default_codec,
) -> PodiumLog | None:
    """Decode one receipt log entry, or return None if it isn't ours.

    Logs from another address, with a different topic0, or whose topics and
    data don't fit the ABI are ignored.
    """
    if str(log.get("address", "")).lower() != contract_address.lower():
        return None

    topics = [HexBytes(topic) for topic in log.get("topics") or []]
    if not topics or topics[0] != PODIUM_CREATED_TOPIC:
        return None

    entry = {key: log.get(key) for key in _LOG_META_KEYS}
    entry.update(address=log.get("address"), topics=topics, data=HexBytes(log.get("data") or b""))
    try:
        event = get_event_data(codec, PODIUM_CREATED_ABI, entry)
    except (MismatchedABI, DecodingError) as exc:
        logger.debug("PodiumCreated log did not decode: %s", exc)
        return None

    args = event["args"]
    return PodiumLog(
        voter=str(args["voter"]).lower(),
        fid=int(args["fid"]),
        day=int(args["day"]),
        brand_ids=tuple(int(b) for b in args["brandIds"]),  # type: ignore[arg-type]
        cost=int(args["cost"]),
    )


class HttpxProvider(JSONBaseProvider):
    """web3 provider that sends JSON-RPC requests through an httpx client."""

    def __init__(
        self,
        endpoint_uri: str,
        *,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__()
        self.endpoint_uri = endpoint_uri
        self._client = client or httpx.Client(timeout=timeout)

    def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        resp = self._client.post(
            self.endpoint_uri,
            content=self.encode_rpc_request(method, params),
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()
        return self.decode_rpc_response(resp.content)

    def close(self) -> None:
        self._client.close()


class ChainClient:
    """Receipt lookups for the podium contract.

    Parameters
    ----------
    rpc_url:
        HTTP(S) JSON-RPC endpoint (``BASE_RPC_URL``).
    contract_address:
        Address of the podium contract whose logs we decode.
    client:
        Injected :class:`httpx.Client` (tests pass one with a
        :class:`httpx.MockTransport`).

    Transport failures surface as :class:`httpx.HTTPError`, RPC error
    objects as :class:`web3.exceptions.Web3RPCError`.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        *,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.provider = HttpxProvider(rpc_url, timeout=timeout, client=client)
        self.w3 = Web3(self.provider)

    def close(self) -> None:
        self.provider.close()

    def get_receipt(self, tx_hash: str) -> dict | None:
        """Receipt for *tx_hash*; None while the tx is unknown/pending."""
        try:
            return dict(self.w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None

    def find_podium_created(self, tx_hash: str) -> PodiumLog | None:
        """Decode the ``PodiumCreated`` log emitted by *tx_hash*.

        Returns None when the receipt is missing or holds no matching log.
        Transport and RPC failures propagate to the caller.
        """
        receipt = self.get_receipt(tx_hash)
        if not receipt:
            logger.warning("No receipt found for transaction %s", tx_hash)
            return None

        for log in receipt.get("logs") or []:
            decoded = decode_podium_log(log, self.contract_address, self.w3.codec)
            if decoded is not None:
                logger.debug("Decoded PodiumCreated for %s: %s", tx_hash, decoded)
                return decoded

        logger.warning("No PodiumCreated event found for transaction %s", tx_hash)
        return None
