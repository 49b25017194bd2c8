"""Echo tool: returns the given text in an echo-reply envelope."""

from shared.schema import object_schema
from tool_server.responses import build_response

INPUT_SCHEMA = object_schema({"text": {"type": "string"}})


def register(dispatcher, tool_id, logger):
    async def echo(arguments, extra):
        logger.debug("Echo request", arguments=arguments)
        response = {
            "message": "echo-reply",
            "data": {"text": arguments["text"]},
        }
        return build_response(response)

    dispatcher.tool(tool_id, "Echo Tool", INPUT_SCHEMA, echo)
