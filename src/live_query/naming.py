from __future__ import annotations

from live_query.models import Subscription

TABLE_SCHEMA = "public"


def stream_name(*, namespace: str, model: str) -> str:
    return f"{namespace}.table.{TABLE_SCHEMA}.{model}"


def consumer_group_name(*, namespace: str, subscription: Subscription) -> str:
    # Identical filters share one group (and its delivery bookkeeping) across processes.
    return f"{stream_name(namespace=namespace, model=subscription.model)}.{subscription.fingerprint()}"


def consumer_name(*, namespace: str, client_id: str) -> str:
    return f"{namespace}.{client_id}"
