import argparse
import asyncio
from datetime import datetime, timezone
import logging
from typing import Optional
from jwcrypto import jwk, jwt
from ulid import ULID

from social.bonjour.card.model.base import Base
from social.bonjour.card.model.engine import create_database_engine

logger = logging.getLogger(__name__)


def gen_jwk() -> jwk.JWK:
    return jwk.JWK.generate(kty="EC", crv="P-256", kid=str(ULID()), alg="ES256")


def mint_identity_token(
    key_set: jwk.JWKSet,
    identity: str,
    kid: Optional[str] = None,
    expires_in: Optional[int] = None,
) -> str:
    """
    Sign an identity token the way the wallet auth service does.

    Used for development and tests; in production tokens come from the auth service after it
    verified the wallet signature.
    """
    if kid is None:
        key = next(iter(key_set["keys"]), None)
    else:
        key = key_set.get_key(kid)
    if key is None:
        raise ValueError("No signing key available")

    now = int(datetime.now(timezone.utc).timestamp())
    claims = {"sub": identity, "iat": now}
    if expires_in is not None:
        claims["exp"] = now + expires_in

    identity_token = jwt.JWT(
        header={"alg": "ES256", "kid": key.key_id},
        claims=claims,
    )
    identity_token.make_signed_token(key)
    return str(identity_token.serialize())


async def genJwk() -> None:
    print(gen_jwk().export(private_key=True))


async def mintToken(jwks_file: str, identity: str, kid: Optional[str], expires_in: Optional[int]) -> None:
    with open(jwks_file) as fd:
        key_set = jwk.JWKSet.from_json(fd.read())
    print(mint_identity_token(key_set, identity, kid=kid, expires_in=expires_in))


async def createTables(database_url: str) -> None:
    engine = create_database_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()
    logger.info("Created tables in %s", database_url)


async def realMain() -> None:
    parser = argparse.ArgumentParser(prog="bonjourutil", description="Bonjour utilities")

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-jwk", help="Generate a JWK")

    mint_token = subparsers.add_parser(
        "mint-token", help="Sign a development identity token"
    )
    mint_token.add_argument("jwks_file", help="Path to a JWK set JSON file.")
    mint_token.add_argument("identity", help="The wallet address to put in 'sub'.")
    mint_token.add_argument("--kid", default=None, help="The signing key id.")
    mint_token.add_argument(
        "--expires-in", type=int, default=None, help="Lifetime in seconds."
    )

    create_tables = subparsers.add_parser(
        "create-tables", help="Create tables directly, for SQLite development databases"
    )
    create_tables.add_argument("database_url", help="SQLAlchemy async database URL.")

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-jwk":
        await genJwk()
    elif command == "mint-token":
        await mintToken(
            args["jwks_file"], args["identity"], args.get("kid"), args.get("expires_in")
        )
    elif command == "create-tables":
        await createTables(args["database_url"])


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
