"""Built-in workflow actions.

Every handler receives an ``ActionContext`` and returns the context updates
it produced. Handlers never write to the execution directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, assert_never

from ..errors import ConfigurationError, NoProxyAvailable, UnknownAction
from ..models import Availability, SecondFactorChallenge, utcnow
from ..orchestrator import Credentials
from .params import MISSING, lookup

if TYPE_CHECKING:
    from ..infra.artifacts import ArtifactStore
    from ..infra.proxy_pool import ProxyManager
    from ..orchestrator import Orchestrator


class ActionKind(str, Enum):
    AUTH_LOGIN = "auth.login"
    SCRAPING_SCRAPE = "scraping.scrape"
    PROXY_ROTATE = "proxy.rotate"
    DATA_FILTER = "data.filter"
    DATA_SAVE = "data.save"
    DELAY = "delay"

    @classmethod
    def parse(cls, raw: str) -> "ActionKind":
        try:
            return cls(raw)
        except ValueError:
            raise UnknownAction(raw) from None


@dataclass(slots=True)
class ActionContext:
    workflow_name: str
    execution_id: str
    step_name: str
    params: dict[str, Any]
    results: Mapping[str, Any]
    orchestrator: "Orchestrator | None"
    proxy_manager: "ProxyManager | None"
    artifact_store: "ArtifactStore | None"
    artifact_namespace: str
    sleep: Callable[[float], Awaitable[Any]]
    clock: Callable[[], datetime] = utcnow

    def require_orchestrator(self) -> "Orchestrator":
        if self.orchestrator is None:
            raise ConfigurationError(f"Step '{self.step_name}' needs an orchestrator")
        return self.orchestrator


async def dispatch(kind: ActionKind, ctx: ActionContext) -> dict[str, Any]:
    match kind:
        case ActionKind.AUTH_LOGIN:
            return await auth_login(ctx)
        case ActionKind.SCRAPING_SCRAPE:
            return await scraping_scrape(ctx)
        case ActionKind.PROXY_ROTATE:
            return await proxy_rotate(ctx)
        case ActionKind.DATA_FILTER:
            return await data_filter(ctx)
        case ActionKind.DATA_SAVE:
            return await data_save(ctx)
        case ActionKind.DELAY:
            return await delay(ctx)
        case _:
            assert_never(kind)


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------
async def auth_login(ctx: ActionContext) -> dict[str, Any]:
    orchestrator = ctx.require_orchestrator()
    params = ctx.params
    username = params.get("username")
    identity = params.get("identity") or username
    if not identity:
        raise ConfigurationError(f"Step '{ctx.step_name}' needs 'identity' or 'username'")
    credentials = None
    if username is not None and params.get("password") is not None:
        credentials = Credentials(
            username=str(username),
            password=str(params["password"]),
            options=dict(params.get("options") or {}),
        )
    outcome = await orchestrator.ensure_session(
        str(identity), credentials, allow_login=bool(params.get("allowLogin", True))
    )
    if isinstance(outcome, SecondFactorChallenge):
        return {
            "secondFactorRequired": True,
            "secondFactorToken": outcome.token,
            "secondFactorExpiresAt": outcome.expires_at.isoformat(),
        }
    return {
        "sessionId": outcome.session_id,
        "session": {
            "session_id": outcome.session_id,
            "owner_identity": outcome.owner_identity,
            "expires_at": outcome.expires_at.isoformat(),
            "cookies": [cookie.model_dump() for cookie in outcome.cookies],
            "fingerprint": dict(outcome.fingerprint),
        },
        "secondFactorRequired": False,
    }


async def scraping_scrape(ctx: ActionContext) -> dict[str, Any]:
    orchestrator = ctx.require_orchestrator()
    params = ctx.params
    url = params.get("url")
    if not url:
        raise ConfigurationError(f"Step '{ctx.step_name}' needs 'url'")
    session_id = params.get("sessionId") or ctx.results.get("sessionId")
    if not session_id:
        raise ConfigurationError(f"Step '{ctx.step_name}' needs a session; run auth.login first")
    max_retries = params.get("maxRetries")
    offers = await orchestrator.scrape_with_session(
        str(session_id),
        str(url),
        max_retries=int(max_retries) if max_retries is not None else None,
        policy=params.get("policy"),
        options=dict(params.get("options") or {}),
    )
    return {
        "offers": [offer.model_dump(mode="json") for offer in offers],
        "totalOffers": len(offers),
    }


async def proxy_rotate(ctx: ActionContext) -> dict[str, Any]:
    if ctx.proxy_manager is None:
        raise ConfigurationError(f"Step '{ctx.step_name}' needs a proxy manager")
    proxy = ctx.proxy_manager.get_next_proxy()
    if proxy is None:
        raise NoProxyAvailable("No active proxy available")
    return {
        "currentProxy": {
            "id": proxy.proxy_id,
            "url": proxy.url,
            "provider": proxy.provider_name,
            "country": proxy.country,
        }
    }


def _source_items(ctx: ActionContext, source: str) -> list[dict[str, Any]]:
    items = lookup(ctx.results, source)
    if items is MISSING or items is None:
        return []
    if not isinstance(items, list):
        raise ConfigurationError(f"Step '{ctx.step_name}': '{source}' is not a list")
    return items


def _matches(item: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
    price = item.get("price")
    if params.get("minPrice") is not None and (price is None or price < float(params["minPrice"])):
        return False
    if params.get("maxPrice") is not None and (price is None or price > float(params["maxPrice"])):
        return False
    brand = params.get("brand")
    if brand and str(brand).lower() not in str(item.get("brand") or "").lower():
        return False
    availability = params.get("availability")
    if availability and item.get("availability") != Availability(availability).value:
        return False
    min_discount = params.get("minDiscount")
    if min_discount is not None:
        discount = item.get("discount_pct")
        if discount is None or discount < float(min_discount):
            return False
    return True


async def data_filter(ctx: ActionContext) -> dict[str, Any]:
    source = str(ctx.params.get("source") or "offers")
    filtered = [item for item in _source_items(ctx, source) if _matches(item, ctx.params)]
    return {f"{source}_filtered": filtered, "filteredCount": len(filtered)}


async def data_save(ctx: ActionContext) -> dict[str, Any]:
    if ctx.artifact_store is None:
        raise ConfigurationError(f"Step '{ctx.step_name}' needs an artifact store")
    source = str(ctx.params.get("source") or "offers")
    items = _source_items(ctx, source)
    namespace = str(ctx.params.get("namespace") or ctx.artifact_namespace)
    payload = {
        "workflow": ctx.workflow_name,
        "execution_id": ctx.execution_id,
        "step": ctx.step_name,
        "source": source,
        "label": ctx.params.get("label"),
        "timestamp": ctx.clock().isoformat(),
        "count": len(items),
        "items": items,
    }
    key = await ctx.artifact_store.put(namespace, payload)
    return {"savedCount": len(items), "artifactKey": key}


async def delay(ctx: ActionContext) -> dict[str, Any]:
    duration_ms = float(ctx.params.get("duration", 1000))
    if duration_ms < 0:
        raise ConfigurationError(f"Step '{ctx.step_name}': duration must be >= 0")
    await ctx.sleep(duration_ms / 1000)
    return {}


__all__ = ["ActionContext", "ActionKind", "dispatch"]
