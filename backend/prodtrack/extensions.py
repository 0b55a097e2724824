# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def configure_sqlite(engine) -> None:
    """
    Let SQLAlchemy drive SQLite transactions itself.

    pysqlite defers BEGIN until the first DML statement, so a SAVEPOINT
    issued first becomes the outermost transaction and its RELEASE commits.
    Disabling the driver's handling and emitting BEGIN on SQLAlchemy's
    begin event makes begin_nested() behave as on other databases.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
