"""Store connections built once at startup and handed to the report composer."""

import logging
from dataclasses import dataclass

import redis
from elasticsearch import Elasticsearch
from neo4j import GraphDatabase
from sqlalchemy import create_engine

from app.config import Settings
from app.stores import GraphAdapter, ProfileCache, RelationalAdapter, SearchAdapter

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """The four store adapters the report pipelines read through."""
    search: SearchAdapter
    graph: GraphAdapter
    relational: RelationalAdapter
    profiles: ProfileCache

    @classmethod
    def connect(cls, settings: Settings) -> "Stores":
        """Create pooled clients for every store; no round trip is made yet."""
        es_client = Elasticsearch(settings.elasticsearch_url)
        neo_driver = GraphDatabase.driver(
            settings.neo4j_uri,
            auth=(settings.neo4j_user, settings.neo4j_password),
        )
        engine = create_engine(settings.database_url, pool_pre_ping=True)
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)

        return cls(
            search=SearchAdapter(es_client, max_hits=settings.search_max_hits),
            graph=GraphAdapter(neo_driver, database=settings.neo4j_database),
            relational=RelationalAdapter(engine),
            profiles=ProfileCache(redis_client),
        )

    def verify(self) -> None:
        """Round-trip every store; the first unreachable one raises BackendUnavailable."""
        self.profiles.ping()
        logger.info("Connected to Redis")
        self.graph.ping()
        logger.info("Connected to Neo4j")
        self.relational.ping()
        logger.info("Connected to PostgreSQL")
        self.search.ping()
        logger.info("Connected to Elasticsearch")

    def close(self) -> None:
        self.profiles.client.close()
        self.graph.driver.close()
        self.relational.engine.dispose()
        self.search.client.close()
