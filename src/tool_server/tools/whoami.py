"""Reports whether the caller's bearer token reached the tool handler."""

from shared.schema import object_schema

INPUT_SCHEMA = object_schema({})


def register(dispatcher, tool_id, logger):
    async def whoami(arguments, extra):
        token = extra.get("bearer_token")
        return {
            "authenticated": token is not None,
            # Never echo the full credential
            "token_suffix": token[-4:] if token else None,
            "request_id": extra.get("request_id"),
        }

    dispatcher.tool(tool_id, "Describe the credential of the current call", INPUT_SCHEMA, whoami)
