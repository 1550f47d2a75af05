"""
Compute processor for Postgres instances owned by a parent stack.

The consuming stack gets its own role and database inside the shared
instance. They are created (or the role password rotated) with one psql
invocation before any value is registered; a failure fails the deploy.
"""

import json
import logging
import os
import re
import secrets
import string
import tempfile
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from ..core import naming
from ..core.exceptions import EmptyRequiredOutputError
from ..core.logging_config import secret_masking_filter
from ..stacks.models import ResourceDescriptor
from ..stacks.reference import StackReference, get_parent_output
from .processors import ProcessorContext

logger = logging.getLogger("stackbind.processors.postgres")

RESOURCE_TYPE = "postgres"
PASSWORD_LENGTH = 20
DEFAULT_PORT = "5432"

_IDENTIFIER_UNSAFE = re.compile(r"[^a-z0-9_]")


class PostgresConfig(BaseModel):
    admin_database: str = Field("postgres", alias="adminDatabase")
    ssl_mode: Optional[str] = Field(None, alias="sslMode")

    model_config = ConfigDict(populate_by_name=True)


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def consumer_identifier(stack_name: str) -> str:
    """Role and database name for a consuming stack (lower-case, [a-z0-9_])."""
    return _IDENTIFIER_UNSAFE.sub("_", stack_name.lower())


def split_endpoint(endpoint: str, export_key: str, reference: str):
    host, sep, port = endpoint.rpartition(":")
    if not sep:
        return endpoint, DEFAULT_PORT
    if not host or not port:
        raise EmptyRequiredOutputError(export_key, reference)
    return host, port


def create_user_sql(role: str, database: str, password: str) -> str:
    escaped = password.replace("'", "''")
    return (
        "DO $$\nBEGIN\n"
        f"  IF NOT EXISTS (SELECT FROM pg_roles WHERE rolname = '{role}') THEN\n"
        f"    CREATE ROLE \"{role}\" LOGIN PASSWORD '{escaped}';\n"
        "  ELSE\n"
        f"    ALTER ROLE \"{role}\" WITH LOGIN PASSWORD '{escaped}';\n"
        "  END IF;\n"
        "END\n$$;\n"
        f"SELECT 'CREATE DATABASE \"{database}\" OWNER \"{role}\"' "
        f"WHERE NOT EXISTS (SELECT FROM pg_database WHERE datname = '{database}')\\gexec\n"
        f'GRANT ALL PRIVILEGES ON DATABASE "{database}" TO "{role}";\n'
    )


def _create_user(ctx: ProcessorContext, host, port, root_user, root_password, role, password):
    config = ctx.config if isinstance(ctx.config, PostgresConfig) else PostgresConfig()
    env = {
        "PGHOST": host,
        "PGPORT": port,
        "PGUSER": root_user,
        "PGPASSWORD": root_password,
        "PGDATABASE": config.admin_database,
    }
    if config.ssl_mode:
        env["PGSSLMODE"] = config.ssl_mode

    fd, sql_path = tempfile.mkstemp(prefix="stackbind-", suffix=".sql")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(create_user_sql(role, role, password))
        ctx.runner.run(["psql", "-v", "ON_ERROR_STOP=1", "-f", sql_path], env=env)
    finally:
        os.unlink(sql_path)


def postgres_compute_processor(
    descriptor: ResourceDescriptor,
    collector,
    ref: StackReference,
    ctx: ProcessorContext,
) -> None:
    """
    Bind a role and database of the consuming stack.

    Env vars: PGHOST_<RES>, PGPORT_<RES>, PGUSER_<RES>, PGDATABASE_<RES>,
    PGPASSWORD_<RES> (secret) plus the generic PGHOST, PGPORT, PGUSER,
    PGDATABASE and PGPASSWORD (secret).
    """
    physical = ctx.physical_name(descriptor)
    owner = ctx.owner_reference

    endpoint_key = naming.postgres_endpoint_export(physical)
    endpoint = get_parent_output(ref, endpoint_key, owner, False)
    root_user = get_parent_output(ref, naming.postgres_username_export(physical), owner, False)
    root_password = get_parent_output(
        ref, naming.postgres_password_export(physical), owner, True
    )
    host, port = split_endpoint(endpoint, endpoint_key, owner)

    role = consumer_identifier(ctx.consumer_stack)
    password = generate_password()
    secret_masking_filter.register([password])
    logger.info(f"Creating role and database {role} on {host}:{port}")
    _create_user(ctx, host, port, root_user, root_password, role, password)

    res = naming.to_env_variable_name(descriptor.name)
    source = (descriptor.type, descriptor.name, owner)
    for name, value in [
        (f"PGHOST_{res}", host),
        (f"PGPORT_{res}", port),
        (f"PGUSER_{res}", role),
        (f"PGDATABASE_{res}", role),
        ("PGHOST", host),
        ("PGPORT", port),
        ("PGUSER", role),
        ("PGDATABASE", role),
    ]:
        collector.add_env_variable_if_not_exist(name, value, *source)
    collector.add_secret_env_variable_if_not_exist(f"PGPASSWORD_{res}", password, *source)
    collector.add_secret_env_variable_if_not_exist("PGPASSWORD", password, *source)

    url = f"postgres://{quote(role)}:{quote(password, safe='')}@{host}:{port}/{quote(role)}"
    collector.add_resource_tpl_extension(
        descriptor.name,
        {
            "url": url,
            "host": host,
            "port": port,
            "user": role,
            "database": role,
            "password": password,
        },
    )
    collector.add_output(
        naming.export_key(ctx.consumer_stack, descriptor.name, "db-user"),
        json.dumps({"username": role, "database": role, "password": password, "dbUri": url}),
        secret=True,
    )
