import asyncio
from asyncio.exceptions import TimeoutError

import aioboto3
import click
from botocore.exceptions import ConnectionError, ClientError
from dotenv import load_dotenv

from nftindexer.nft.data.models import ALL_MODELS

load_dotenv()


async def reset_db_async(endpoint_url, table_prefix, retry):
    resource_kwargs = dict(endpoint_url=endpoint_url)
    session = aioboto3.Session()
    async with session.resource("dynamodb", **resource_kwargs) as dynamodb:
        retrying = True
        while retrying:
            try:
                for model in ALL_MODELS:
                    table_name = table_prefix + model.table_name
                    table = await dynamodb.Table(table_name)
                    try:
                        await table.delete()
                        await table.wait_until_not_exists()
                    except dynamodb.meta.client.exceptions.ResourceNotFoundException:
                        pass
                    schema = model.schema
                    schema["TableName"] = table_name
                    table = await dynamodb.create_table(**schema)
                    await table.wait_until_exists()
                retrying = False
            except (ConnectionError, ClientError, TimeoutError, ValueError):
                if retry:
                    await asyncio.sleep(1)
                else:
                    raise


@click.command()
@click.argument("ENDPOINT_URL")
@click.option("--retry/--no-retry", default=False)
@click.option(
    "--dynamodb-table-prefix",
    envvar="AWS_DYNAMODB_TABLE_PREFIX",
    help="Prefix for DynamoDB table names",
    default="",
)
def reset_db(endpoint_url, dynamodb_table_prefix, retry):
    """
    Drop and create the owner, token, and transfer tables
    """
    asyncio.run(reset_db_async(endpoint_url, dynamodb_table_prefix, retry))
    click.echo(click.style("DB has been reset", fg="green"))
