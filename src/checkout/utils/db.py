"""Schema management for SQL-backed providers.

The memory provider needs no schema. For ``postgresql``/``sqlite`` providers
the checkout tables (orders, stock entries, reservations, gateway events,
idempotency records, jobs) are created from the SQLAlchemy models Protean
builds for each registered aggregate.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

_SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in _SQL_PROVIDERS:
            yield provider


def _register_models(domain: Domain, provider) -> None:
    # Touching ``_dao`` forces Protean to build and register the SQLAlchemy
    # model for each aggregate and entity bound to this provider.
    records = list(domain.registry.aggregates.values()) + list(domain.registry.entities.values())
    for record in records:
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> list[str]:
    """Create tables for every SQL provider. Returns the provider names touched."""
    touched = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, provider)
            provider._metadata.create_all(engine)
            touched.append(provider.name)
    return touched


def drop_db(domain: Domain) -> list[str]:
    """Drop tables for every SQL provider. Returns the provider names touched."""
    touched = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
            touched.append(provider.name)
    return touched
