"""Relay core: correlation table, duplex session, broker and call gateway."""

from brprelay.relay.broker import BrokerState, RelayBroker
from brprelay.relay.correlation import (
    CorrelationTable,
    Delivered,
    PendingCall,
    SingleShotSink,
    SinkKind,
    StreamingSink,
)
from brprelay.relay.gateway import CallGateway, WatchStream
from brprelay.relay.session import DuplexSession

__all__ = [
    "BrokerState",
    "RelayBroker",
    "CorrelationTable",
    "Delivered",
    "PendingCall",
    "SingleShotSink",
    "SinkKind",
    "StreamingSink",
    "CallGateway",
    "WatchStream",
    "DuplexSession",
]
