class Model:
    def __init__(self, schema: dict) -> None:
        self.__schema = schema

    @property
    def table_name(self):
        return self.__schema["TableName"]

    @property
    def schema(self):
        return self.__schema.copy()


def _id_keyed_model(table_name: str) -> Model:
    return Model(
        {
            "TableName": table_name,
            "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
            "ProvisionedThroughput": {"ReadCapacityUnits": 10, "WriteCapacityUnits": 10},
        }
    )


Owners = _id_keyed_model("owner")

Tokens = _id_keyed_model("token")

Transfers = _id_keyed_model("transfer")

ALL_MODELS = (Owners, Tokens, Transfers)
