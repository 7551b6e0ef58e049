"""
A walkthrough of the graph database: build a small graph, index it three ways, query it, empty it,
and retire an index. Run it with

    python -m propgraph.walkthrough

Settings are read from PROPGRAPH_* environment variables.
"""

import logging
import random
import typing

from propgraph import config
from propgraph.data_types import typedefs
from propgraph.graph_layer import graph_db

_logger = logging.getLogger(__name__)


def _banner(title: str) -> None:
    _logger.info("================ %s ================", title)


def add_vertex_and_edge(db: graph_db.GraphDB) -> None:
    _banner("Add vertex and edge")
    connection = db.connect()
    try:
        uuid = connection.add_vertex('uuid', ident='uuid_ident', create_at='uuid_create_time')
        user_id = connection.add_vertex('user_id', ident='user_id_ident',
                                        create_at='user_id_create_time')
        uuid.add_edge_to('related', user_id, create_at='just_now')
        outcome = connection.try_commit()
    finally:
        connection.close()
    if not outcome:
        _logger.error("Adding the vertex and edge failed: %s", outcome.error)


def add_composite_index(db: graph_db.GraphDB) -> None:
    _banner("Add composite index")
    management = db.open_management()
    ident = management.get_property_key('ident')
    if ident is None:
        ident = management.make_property_key('ident', str)
    management.build_index('vertexByIdent', [ident], unique=True)
    management.commit()

    management.await_graph_index_status('vertexByIdent')

    management = db.open_management()
    management.update_index(management.get_graph_index('vertexByIdent'),
                            typedefs.SchemaAction.REINDEX).result()
    management.commit()


def add_edge_index(db: graph_db.GraphDB) -> None:
    _banner("Add index of edge")
    management = db.open_management()
    related = management.get_edge_label('related')
    if related is None:
        related = management.make_edge_label('related')
    create_at = management.get_property_key('create_at')
    if create_at is None:
        create_at = management.make_property_key('create_at', str)
    management.build_edge_index(related, 'relatedByCreateAt', typedefs.Direction.BOTH,
                                [create_at])
    management.commit()

    management.await_relation_index_status('relatedByCreateAt', 'related')

    management = db.open_management()
    management.update_index(management.get_relation_index('related', 'relatedByCreateAt'),
                            typedefs.SchemaAction.REINDEX).result()
    management.commit()


def add_property_index(db: graph_db.GraphDB) -> None:
    _banner("Add index of property")
    management = db.open_management()
    refer = management.get_property_key('refer')
    if refer is None:
        refer = management.make_property_key('refer', str, typedefs.Cardinality.SET)
    create_at = management.get_property_key('create_at')
    if create_at is None:
        create_at = management.make_property_key('create_at', str)
    management.build_property_index(refer, 'referByCreateAt', [create_at])
    management.commit()

    management.await_relation_index_status('referByCreateAt', 'refer')

    management = db.open_management()
    management.update_index(management.get_relation_index('refer', 'referByCreateAt'),
                            typedefs.SchemaAction.REINDEX).result()
    management.commit()

    with db.connect() as connection:
        for vertex in connection.traversal().V():
            vertex.property('refer', 'v-%d' % random.randrange(1 << 31), create_at='just_now')


def traverse_graph(db: graph_db.GraphDB) -> typing.List[str]:
    """Return the idents of the vertices related to user_id vertices."""
    _banner("Traversal graph")
    idents = [vertex.value('ident')
              for vertex in db.traversal().V().has_label('user_id').in_('related')]
    for ident in idents:
        _logger.info("Related to a user_id: %s", ident)
    db.tx().commit()
    return idents


def remove_all_vertices(db: graph_db.GraphDB) -> None:
    _banner("Remove all vertices")
    connection = db.connect()
    try:
        connection.traversal().V().drop().iterate()
        outcome = connection.try_commit()
    finally:
        connection.close()
    if not outcome:
        _logger.error("Removing all vertices failed: %s", outcome.error)


def drop_vertex_composite_index(db: graph_db.GraphDB) -> None:
    _banner("Drop composite index")
    management = db.open_management()
    management.update_index(management.get_graph_index('vertexByIdent'),
                            typedefs.SchemaAction.DISABLE_INDEX).result()
    management.await_graph_index_status('vertexByIdent', typedefs.IndexStatus.DISABLED)
    management.commit()
    db.tx().commit()

    management = db.open_management()
    job = management.update_index(management.get_graph_index('vertexByIdent'),
                                  typedefs.SchemaAction.REMOVE_INDEX)
    management.commit()
    db.tx().commit()
    job.result()


def run(db: graph_db.GraphDB) -> typing.List[str]:
    """Run every stage of the walkthrough against the database. Return the traversal's result."""
    add_vertex_and_edge(db)
    add_composite_index(db)
    add_edge_index(db)
    add_property_index(db)
    idents = traverse_graph(db)
    remove_all_vertices(db)
    drop_vertex_composite_index(db)
    return idents


def main() -> None:
    settings = config.StoreSettings.from_env()
    logging.basicConfig(level=settings.logging_level,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    with graph_db.GraphDB(settings) as db:
        run(db)


if __name__ == '__main__':
    main()
