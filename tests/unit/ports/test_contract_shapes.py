import importlib
import inspect

import pytest

# Mapping of module -> (ProtocolName, required_methods: {name: arity})
PORT_PROTOCOLS = {
    "coinwise.ports.remote_store": ("RemoteStore", {"get": 1, "set": 2, "delete": 1, "subscribe": 2}),
    "coinwise.ports.identity_provider": (
        "IdentityProvider",
        {"sign_in": 2, "sign_up": 2, "sign_out": 0, "on_auth_change": 1},
    ),
    "coinwise.ports.price_feed": ("PriceFeed", {"fetch_prices": 1}),
    "coinwise.ports.pool_cache": ("PoolCache", {"load": 0, "save": 1}),
    "coinwise.ports.secrets_provider": ("SecretsProvider", {"get": 1, "get_optional": 1}),
    "coinwise.ports.telemetry": ("Telemetry", {"log": -1}),  # variable kwargs
}

# Adapters that must satisfy the port shapes above
ADAPTERS = {
    "coinwise.adapters.memory_store.InMemoryRemoteStore": "coinwise.ports.remote_store",
    "coinwise.adapters.firebase.FirebaseRealtimeStore": "coinwise.ports.remote_store",
    "coinwise.adapters.memory_identity.InMemoryIdentityProvider": "coinwise.ports.identity_provider",
    "coinwise.adapters.firebase_auth.FirebaseIdentityProvider": "coinwise.ports.identity_provider",
    "coinwise.adapters.binance.BinancePriceFeed": "coinwise.ports.price_feed",
    "coinwise.adapters.static_feed.StaticPriceFeed": "coinwise.ports.price_feed",
    "coinwise.adapters.pool_cache.FilePoolCache": "coinwise.ports.pool_cache",
    "coinwise.adapters.env_provider.EnvSecretsProvider": "coinwise.ports.secrets_provider",
    "coinwise.adapters.telemetry.jsonl.JsonlTelemetry": "coinwise.ports.telemetry",
}


def _positional(fn) -> list:
    # remove self / cls
    sig = inspect.signature(fn)
    return [p for p in sig.parameters.values() if p.kind == p.POSITIONAL_OR_KEYWORD][1:]


@pytest.mark.parametrize("module_name,meta", PORT_PROTOCOLS.items())
def test_required_port_signatures(module_name, meta):
    proto_name, methods = meta
    module = importlib.import_module(module_name)
    proto = getattr(module, proto_name)
    assert inspect.isclass(proto), f"{proto_name} not a class"
    for method_name, arity in methods.items():
        fn = getattr(proto, method_name, None)
        assert fn is not None, f"Missing method {method_name} on {proto_name}"
        if arity >= 0:
            params = _positional(fn)
            assert (
                len(params) == arity
            ), f"{proto_name}.{method_name} expected {arity} args got {len(params)}"


@pytest.mark.parametrize("dotted,port_module", ADAPTERS.items())
def test_adapters_match_their_port(dotted, port_module):
    module_name, cls_name = dotted.rsplit(".", 1)
    adapter = getattr(importlib.import_module(module_name), cls_name)
    _, methods = PORT_PROTOCOLS[port_module]
    for method_name, arity in methods.items():
        fn = getattr(adapter, method_name, None)
        assert callable(fn), f"{cls_name} lacks {method_name}"
        if arity >= 0:
            assert len(_positional(fn)) >= arity
