"""Broker gateway exports."""

from trade_guardian.broker.base import (
    BrokerAPIError,
    BrokerError,
    BrokerGateway,
    parse_broker_trades,
)
from trade_guardian.broker.metaapi import MetaApiBroker
from trade_guardian.broker.paper import PaperBroker

__all__ = [
    "BrokerAPIError",
    "BrokerError",
    "BrokerGateway",
    "MetaApiBroker",
    "PaperBroker",
    "parse_broker_trades",
]
