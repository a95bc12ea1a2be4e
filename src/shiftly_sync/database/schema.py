"""Table catalog, schema definition and initialization for both stores.

The same logical schema is created on the local SQLite file and on the
primary MySQL database; only the column types differ per dialect.
``SYNC_TABLES`` lists the tables in foreign-key dependency order
(referenced tables first), which is the order the sync engine copies
them in. Clearing runs in the reverse order.
"""

import logging

from .errors import SchemaError, UnknownTableError
from .models import TableDescriptor

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_TYPE_MAP = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "int": "INTEGER",
        "str": "TEXT",
        "text": "TEXT",
        "real": "REAL",
        "money": "REAL",
        "bool": "INTEGER",
        "date": "DATE",
        "datetime": "TIMESTAMP",
        "blob": "BLOB",
    },
    "mysql": {
        "pk": "INT AUTO_INCREMENT PRIMARY KEY",
        "int": "INT",
        "str": "VARCHAR(255)",
        "text": "TEXT",
        "real": "DOUBLE",
        "money": "DECIMAL(12,2)",
        "bool": "TINYINT(1)",
        "date": "DATE",
        "datetime": "DATETIME",
        "blob": "LONGBLOB",
    },
}

# Column order here is the order rows are read and bound during a copy.
_TABLE_COLUMNS = {
    "usuarios": {
        "id": "pk",
        "nome": "str",
        "email": "str",
        "cpf": "str",
        "senha": "str",
        "tipo_usuario": "str",
        "cargo": "str",
        "departamento": "str",
        "salario": "money",
        "data_admissao": "date",
        "data_criacao": "datetime",
        "data_atualizacao": "datetime",
        "ativo": "bool",
        "face_encoding": "blob",
    },
    "pontos": {
        "id": "pk",
        "usuario_id": "int",
        "data_hora": "datetime",
        "tipo_ponto": "str",
        "latitude": "real",
        "longitude": "real",
        "endereco": "text",
        "precisao": "real",
        "face_match": "real",
        "face_validada": "bool",
        "observacoes": "text",
        "manual": "bool",
        "corrigido_por_usuario_id": "int",
        "data_correcao": "datetime",
        "motivo_correcao": "text",
        "data_criacao": "datetime",
    },
    "ferias": {
        "id": "pk",
        "usuario_id": "int",
        "data_inicio": "date",
        "data_fim": "date",
        "status": "str",
        "observacoes": "text",
        "motivo_recusa": "text",
        "aprovado_por_usuario_id": "int",
        "data_aprovacao": "datetime",
        "data_solicitacao": "datetime",
        "data_atualizacao": "datetime",
    },
    "horas_extras": {
        "id": "pk",
        "usuario_id": "int",
        "data": "date",
        "horas": "real",
        "status": "str",
        "descricao": "text",
        "justificativa": "text",
        "motivo_recusa": "text",
        "aprovado_por_usuario_id": "int",
        "data_aprovacao": "datetime",
        "pago": "bool",
        "data_pagamento": "date",
        "valor_pago": "money",
        "data_solicitacao": "datetime",
        "data_atualizacao": "datetime",
    },
    "comprovantes": {
        "id": "pk",
        "usuario_id": "int",
        "tipo_comprovante": "str",
        "referencia": "str",
        "data_emissao": "date",
        "periodo_inicio": "date",
        "periodo_fim": "date",
        "valor_bruto": "money",
        "valor_descontos": "money",
        "valor_liquido": "money",
        "salario_base": "money",
        "horas_extras": "real",
        "adicional_noturno": "money",
        "outros_proventos": "money",
        "inss": "money",
        "irrf": "money",
        "vale_transporte": "money",
        "vale_refeicao": "money",
        "outros_descontos": "money",
        "caminho_arquivo": "text",
        "nome_arquivo": "str",
        "tamanho_arquivo": "int",
        "data_criacao": "datetime",
        "data_atualizacao": "datetime",
        "criado_por_usuario_id": "int",
    },
}

_NOT_NULL = {
    "usuarios": {"nome", "email", "senha", "tipo_usuario"},
    "pontos": {"usuario_id", "data_hora", "tipo_ponto"},
    "ferias": {"usuario_id", "data_inicio", "data_fim", "status"},
    "horas_extras": {"usuario_id", "data", "horas", "status"},
    "comprovantes": {"usuario_id", "tipo_comprovante", "referencia"},
}

_UNIQUE = {
    "usuarios": ["email"],
}

# (column, referenced table)
_FOREIGN_KEYS = {
    "pontos": [
        ("usuario_id", "usuarios"),
        ("corrigido_por_usuario_id", "usuarios"),
    ],
    "ferias": [
        ("usuario_id", "usuarios"),
        ("aprovado_por_usuario_id", "usuarios"),
    ],
    "horas_extras": [
        ("usuario_id", "usuarios"),
        ("aprovado_por_usuario_id", "usuarios"),
    ],
    "comprovantes": [
        ("usuario_id", "usuarios"),
        ("criado_por_usuario_id", "usuarios"),
    ],
}

_NATURAL_KEYS = {
    "usuarios": ("email",),
    "pontos": ("usuario_id", "data_hora", "tipo_ponto"),
    "ferias": ("usuario_id", "data_inicio"),
    "horas_extras": ("usuario_id", "data"),
    "comprovantes": ("usuario_id", "tipo_comprovante", "referencia"),
}


def _describe(name: str) -> TableDescriptor:
    refs = []
    for _, target in _FOREIGN_KEYS.get(name, []):
        if target != name and target not in refs:
            refs.append(target)
    return TableDescriptor(
        name=name,
        columns=tuple(_TABLE_COLUMNS[name]),
        primary_key="id",
        depends_on=tuple(refs),
        natural_key=_NATURAL_KEYS.get(name, ()),
    )


def dependency_order(tables) -> list[TableDescriptor]:
    """Sort descriptors so every table comes after the tables it references.

    Keeps the given order wherever dependencies allow it.
    """
    tables = list(tables)
    by_name = {t.name: t for t in tables}
    for table in tables:
        for dep in table.depends_on:
            if dep not in by_name:
                raise SchemaError(
                    f"{table.name} references unknown table {dep}"
                )

    ordered: list[TableDescriptor] = []
    placed: set[str] = set()
    remaining = tables
    while remaining:
        ready = [t for t in remaining
                 if all(d in placed or d == t.name for d in t.depends_on)]
        if not ready:
            names = ", ".join(t.name for t in remaining)
            raise SchemaError(f"cyclic table dependencies among: {names}")
        for table in ready:
            ordered.append(table)
            placed.add(table.name)
        remaining = [t for t in remaining if t.name not in placed]
    return ordered


SYNC_TABLES: list[TableDescriptor] = dependency_order(
    _describe(name) for name in _TABLE_COLUMNS
)


def get_descriptor(name: str, tables=None) -> TableDescriptor:
    for table in tables or SYNC_TABLES:
        if table.name == name:
            return table
    raise UnknownTableError(f"Table {name!r} is not synchronized")


def create_table_sql(name: str, dialect: str) -> str:
    """Build the CREATE TABLE statement for one table in one dialect."""
    try:
        types = _TYPE_MAP[dialect]
    except KeyError:
        raise SchemaError(f"Unsupported dialect {dialect!r}") from None

    lines = []
    not_null = _NOT_NULL.get(name, set())
    for column, kind in _TABLE_COLUMNS[name].items():
        line = f"{column} {types[kind]}"
        if column in not_null:
            line += " NOT NULL"
        lines.append(line)
    for column in _UNIQUE.get(name, []):
        lines.append(f"UNIQUE ({column})")
    for column, target in _FOREIGN_KEYS.get(name, []):
        lines.append(f"FOREIGN KEY ({column}) REFERENCES {target}(id)")
    body = ",\n        ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {name} (\n        {body}\n    )"


def _schema_statements(dialect: str) -> list[str]:
    statements = [
        "CREATE TABLE IF NOT EXISTS schema_version "
        "(version INTEGER PRIMARY KEY)",
    ]
    statements.extend(
        create_table_sql(t.name, dialect) for t in SYNC_TABLES
    )
    insert = "INSERT OR IGNORE" if dialect == "sqlite" else "INSERT IGNORE"
    statements.append(
        f"{insert} INTO schema_version (version) VALUES ({SCHEMA_VERSION})"
    )
    return statements


def initialize_database(db_connection):
    """Create all synchronized tables if they do not exist yet.

    Works on either store handle; the dialect decides column types.
    """
    with db_connection.acquire_connection() as conn:
        for stmt in _schema_statements(conn.dialect):
            cursor = conn.execute(stmt)
            cursor.close()
    logger.info("schema_initialized store=%s version=%s",
                db_connection.label, SCHEMA_VERSION)


def get_schema_version(db_connection) -> int:
    with db_connection.acquire_connection() as conn:
        try:
            version = conn.scalar("SELECT MAX(version) FROM schema_version")
        except Exception:  # table missing on a fresh store
            return 0
    return int(version or 0)


def is_initialized(db_connection) -> bool:
    """Whether the core ``usuarios`` table can be queried."""
    with db_connection.acquire_connection() as conn:
        try:
            conn.scalar("SELECT COUNT(*) FROM usuarios")
        except Exception:  # driver-specific "no such table"
            return False
    return True


def clear_tables(db_connection, tables=None):
    """Delete every synchronized row, children before parents."""
    ordered = dependency_order(tables or SYNC_TABLES)
    with db_connection.acquire_connection() as conn:
        for table in reversed(ordered):
            cursor = conn.execute(f"DELETE FROM {table.name}")  # noqa: S608
            cursor.close()
            logger.info("table_cleared store=%s table=%s",
                        db_connection.label, table.name)
