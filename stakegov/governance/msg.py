"""
Governance message envelope.

Inbound actions and queries travel as single-variant JSON objects, e.g.
``{"cast_vote": {"poll_id": 1, "vote": "yes"}}``. Amounts and fractions are
decimal strings; execute message payloads are base64.
"""

import json
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from ..exceptions import InvalidMessageError
from .execution import ExecutionBatch
from .polls import ExecuteMsg, OrderBy, PollStatus
from .voting import VoteOption


# ══════════════════════════════════════════════════════════════════════
#  FIELD CODECS
# ══════════════════════════════════════════════════════════════════════

def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidMessageError(f"'{name}' must be a decimal string")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidMessageError(f"'{name}' must be a decimal string, got {value!r}") from e
    if not result.is_finite():
        raise InvalidMessageError(f"'{name}' must be finite")
    return result


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidMessageError(f"'{name}' must be an integer, got {value!r}")
    return value


def _str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise InvalidMessageError(f"'{name}' must be a string, got {value!r}")
    return value


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidMessageError(f"'{name}' must be a boolean, got {value!r}")
    return value


def _order_by(value: Any) -> OrderBy:
    if value is None:
        return OrderBy.ASC
    try:
        return OrderBy[_str(value, "order_by").upper()]
    except KeyError as e:
        raise InvalidMessageError(f"Unknown order_by: {value!r}") from e


def _poll_status(value: Any) -> PollStatus:
    try:
        return PollStatus[_str(value, "filter").upper()]
    except KeyError as e:
        raise InvalidMessageError(f"Unknown poll status: {value!r}") from e


def _execute_msg(value: Any) -> ExecuteMsg:
    if not isinstance(value, dict):
        raise InvalidMessageError("execute_msgs entries must be objects")
    try:
        return ExecuteMsg.from_dict(value)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidMessageError(f"Malformed execute message: {e}") from e


def _opt(value: Any, codec, *args):
    return None if value is None else codec(value, *args)


# ══════════════════════════════════════════════════════════════════════
#  HANDLE MESSAGES
# ══════════════════════════════════════════════════════════════════════

class HandleMsg:
    """Base class of inbound actions."""
    variant: ClassVar[str] = ""

    def body(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_body(cls, body: Dict[str, Any]):
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {self.variant: self.body()}


@dataclass(frozen=True)
class CreatePoll(HandleMsg):
    variant: ClassVar[str] = "create_poll"
    deposit: Decimal
    title: str
    description: str
    link: Optional[str] = None
    execute_msgs: List[ExecuteMsg] = field(default_factory=list)

    def body(self) -> Dict[str, Any]:
        return {
            "deposit": str(self.deposit),
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "execute_msgs": [m.to_dict() for m in self.execute_msgs],
        }

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "CreatePoll":
        msgs = body.get("execute_msgs") or []
        if not isinstance(msgs, list):
            raise InvalidMessageError("'execute_msgs' must be a list")
        return cls(
            deposit=_decimal(body["deposit"], "deposit"),
            title=_str(body["title"], "title"),
            description=_str(body["description"], "description"),
            link=_opt(body.get("link"), _str, "link"),
            execute_msgs=[_execute_msg(m) for m in msgs],
        )


@dataclass(frozen=True)
class CastVote(HandleMsg):
    variant: ClassVar[str] = "cast_vote"
    poll_id: int
    vote: VoteOption

    def body(self) -> Dict[str, Any]:
        return {"poll_id": self.poll_id, "vote": self.vote.wire_name}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "CastVote":
        return cls(
            poll_id=_int(body["poll_id"], "poll_id"),
            vote=VoteOption.parse(body["vote"]),
        )


@dataclass(frozen=True)
class EndPoll(HandleMsg):
    variant: ClassVar[str] = "end_poll"
    poll_id: int

    def body(self) -> Dict[str, Any]:
        return {"poll_id": self.poll_id}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "EndPoll":
        return cls(poll_id=_int(body["poll_id"], "poll_id"))


@dataclass(frozen=True)
class ExecutePoll(EndPoll):
    variant: ClassVar[str] = "execute_poll"


@dataclass(frozen=True)
class ExpirePoll(EndPoll):
    variant: ClassVar[str] = "expire_poll"


@dataclass(frozen=True)
class UpdateConfig(HandleMsg):
    variant: ClassVar[str] = "update_config"
    owner: Optional[str] = None
    quorum: Optional[Decimal] = None
    threshold: Optional[Decimal] = None
    voting_period: Optional[int] = None
    timelock_period: Optional[int] = None
    expiration_period: Optional[int] = None
    proposal_deposit: Optional[Decimal] = None
    require_execute_msgs: Optional[bool] = None
    refund_expired_deposit: Optional[bool] = None

    _CODECS: ClassVar[Dict[str, Any]] = {
        "owner": _str,
        "quorum": _decimal,
        "threshold": _decimal,
        "voting_period": _int,
        "timelock_period": _int,
        "expiration_period": _int,
        "proposal_deposit": _decimal,
        "require_execute_msgs": _bool,
        "refund_expired_deposit": _bool,
    }

    def changes(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def body(self) -> Dict[str, Any]:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in self.changes().items()
            if v is not None
        }

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "UpdateConfig":
        unknown = set(body) - set(cls._CODECS)
        if unknown:
            raise InvalidMessageError(f"Unknown update_config fields: {sorted(unknown)}")
        return cls(**{k: _opt(v, cls._CODECS[k], k) for k, v in body.items()})


# ══════════════════════════════════════════════════════════════════════
#  QUERY MESSAGES
# ══════════════════════════════════════════════════════════════════════

class QueryMsg(HandleMsg):
    """Base class of read-only queries."""


@dataclass(frozen=True)
class ConfigQuery(QueryMsg):
    variant: ClassVar[str] = "config"

    def body(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ConfigQuery":
        return cls()


@dataclass(frozen=True)
class StateQuery(ConfigQuery):
    variant: ClassVar[str] = "state"


@dataclass(frozen=True)
class PollQuery(QueryMsg):
    variant: ClassVar[str] = "poll"
    poll_id: int

    def body(self) -> Dict[str, Any]:
        return {"poll_id": self.poll_id}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "PollQuery":
        return cls(poll_id=_int(body["poll_id"], "poll_id"))


@dataclass(frozen=True)
class PollsQuery(QueryMsg):
    variant: ClassVar[str] = "polls"
    filter: Optional[PollStatus] = None
    start_after: Optional[int] = None
    limit: Optional[int] = None
    order_by: OrderBy = OrderBy.ASC

    def body(self) -> Dict[str, Any]:
        return {
            "filter": self.filter.name.lower() if self.filter is not None else None,
            "start_after": self.start_after,
            "limit": self.limit,
            "order_by": self.order_by.name.lower(),
        }

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "PollsQuery":
        return cls(
            filter=_opt(body.get("filter"), _poll_status),
            start_after=_opt(body.get("start_after"), _int, "start_after"),
            limit=_opt(body.get("limit"), _int, "limit"),
            order_by=_order_by(body.get("order_by")),
        )


@dataclass(frozen=True)
class VoteQuery(QueryMsg):
    variant: ClassVar[str] = "vote"
    poll_id: int
    voter: str

    def body(self) -> Dict[str, Any]:
        return {"poll_id": self.poll_id, "voter": self.voter}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "VoteQuery":
        return cls(
            poll_id=_int(body["poll_id"], "poll_id"),
            voter=_str(body["voter"], "voter"),
        )


@dataclass(frozen=True)
class VotersQuery(QueryMsg):
    variant: ClassVar[str] = "voters"
    poll_id: int
    start_after: Optional[str] = None
    limit: Optional[int] = None
    order_by: OrderBy = OrderBy.ASC

    def body(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "start_after": self.start_after,
            "limit": self.limit,
            "order_by": self.order_by.name.lower(),
        }

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "VotersQuery":
        return cls(
            poll_id=_int(body["poll_id"], "poll_id"),
            start_after=_opt(body.get("start_after"), _str, "start_after"),
            limit=_opt(body.get("limit"), _int, "limit"),
            order_by=_order_by(body.get("order_by")),
        )


@dataclass(frozen=True)
class StakerQuery(QueryMsg):
    variant: ClassVar[str] = "staker"
    address: str

    def body(self) -> Dict[str, Any]:
        return {"address": self.address}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "StakerQuery":
        return cls(address=_str(body["address"], "address"))


HANDLE_VARIANTS: Dict[str, Type[HandleMsg]] = {
    cls.variant: cls
    for cls in (CreatePoll, CastVote, EndPoll, ExecutePoll, ExpirePoll, UpdateConfig)
}

QUERY_VARIANTS: Dict[str, Type[QueryMsg]] = {
    cls.variant: cls
    for cls in (
        ConfigQuery, StateQuery, PollQuery, PollsQuery, VoteQuery, VotersQuery, StakerQuery,
    )
}


# ══════════════════════════════════════════════════════════════════════
#  ENVELOPE
# ══════════════════════════════════════════════════════════════════════

def _decode(data: Union[bytes, str, Dict[str, Any]], variants: Dict[str, Type[HandleMsg]]):
    if isinstance(data, (bytes, bytearray, str)):
        try:
            data = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidMessageError(f"Message is not valid JSON: {e}") from e
    if not isinstance(data, dict) or len(data) != 1:
        raise InvalidMessageError("Message must be an object with exactly one variant")

    (variant, body), = data.items()
    cls = variants.get(variant)
    if cls is None:
        raise InvalidMessageError(f"Unknown message variant: {variant}")
    if not isinstance(body, dict):
        raise InvalidMessageError(f"Body of '{variant}' must be an object")
    try:
        return cls.from_body(body)
    except KeyError as e:
        raise InvalidMessageError(f"'{variant}' is missing field {e}") from e


def decode_handle_msg(data: Union[bytes, str, Dict[str, Any]]) -> HandleMsg:
    return _decode(data, HANDLE_VARIANTS)


def decode_query_msg(data: Union[bytes, str, Dict[str, Any]]) -> QueryMsg:
    return _decode(data, QUERY_VARIANTS)


def encode_msg(msg: HandleMsg) -> bytes:
    return json.dumps(msg.to_dict(), sort_keys=True).encode()


# ══════════════════════════════════════════════════════════════════════
#  ENVIRONMENT / RESPONSE
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BlockInfo:
    height: int
    time: float = 0.0


@dataclass(frozen=True)
class Env:
    """Call context supplied by the host."""
    sender: str
    block: BlockInfo
    contract_address: str


@dataclass
class HandleResponse:
    """
    Result of one handled action.

    attributes mirror the contract log; batch carries the messages of a
    passed poll for the host to run.
    """
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    batch: Optional[ExecutionBatch] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def messages(self) -> List[ExecuteMsg]:
        return list(self.batch.messages) if self.batch is not None else []

    def attribute(self, key: str) -> Optional[str]:
        for k, v in self.attributes:
            if k == key:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attributes": [{"key": k, "value": v} for k, v in self.attributes],
            "messages": [m.to_dict() for m in self.messages],
            "data": self.data,
        }
