"""LangGraph agent that turns chat messages into collection changes."""

import json
import sqlite3
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

from rssnotify.config import CHECKPOINT_DB_PATH, DEFAULT_AGENT_MODEL
from rssnotify.tools import TOOLS

SYSTEM_PROMPT = """You are rssnotify, an assistant that manages which journal articles a user receives.

The user receives new articles from journal feeds at fixed times of day. What they receive is
decided by their collections. Each collection has:
- a set of feeds (journals)
- a whitelist: if not empty, an article must contain at least one of these keywords
- a blacklist: an article containing any of these keywords is never sent

Keywords match by substring, against the lower-cased title and the article body as written,
so lower-case keywords match titles regardless of case.

Use show_collections to see the user's collections before changing them, and refer to
collections by the number it returns. Use list_feeds to find feed ids by journal name.
Use list_presets and apply_preset for ready-made keyword and journal lists.
Use register_feed only when the user gives a feed link that is not tracked yet.
Use preview_new_since when the user asks what they would have received since a date.
When the user's intent is unclear, ask a clarifying question rather than guessing.
Be concise but informative in your responses."""


def build_graph(model, tools: list) -> StateGraph:
    """Wire a chat model and the collection tools into a model/tools loop.

    ``model`` must already have the tools bound. The graph ends as soon as the
    model answers without requesting a tool.
    """
    tools_by_name = {tool.name: tool for tool in tools}

    def call_model(state: MessagesState):
        reply = model.invoke([SystemMessage(content=SYSTEM_PROMPT), *state["messages"]])
        return {"messages": [reply]}

    def call_tools(state: MessagesState):
        results = []
        for call in state["messages"][-1].tool_calls:
            tool = tools_by_name.get(call["name"])
            if tool is None:
                error = {"status": "error", "message": f"No tool named {call['name']}"}
                results.append(
                    ToolMessage(content=json.dumps(error), tool_call_id=call["id"], status="error")
                )
                continue
            results.append(tool.invoke({**call, "type": "tool_call"}))
        return {"messages": results}

    def route(state: MessagesState) -> Literal["tools", "__end__"]:
        return "tools" if state["messages"][-1].tool_calls else END

    builder = StateGraph(MessagesState)
    builder.add_node("model", call_model)
    builder.add_node("tools", call_tools)
    builder.add_edge(START, "model")
    builder.add_conditional_edges("model", route, ["tools", END])
    builder.add_edge("tools", "model")
    return builder


def create_agent(
    checkpoint_db_path: str = CHECKPOINT_DB_PATH,
    tools: list | None = None,
    model_name: str = DEFAULT_AGENT_MODEL,
):
    """Compile the command agent on an Anthropic model.

    Conversations are checkpointed in SQLite at ``checkpoint_db_path``.
    """
    tools = TOOLS if tools is None else tools
    model = ChatAnthropic(model=model_name, temperature=0).bind_tools(tools)
    checkpointer = SqliteSaver(sqlite3.connect(checkpoint_db_path, check_same_thread=False))
    return build_graph(model, tools).compile(checkpointer=checkpointer)
