import asyncio
import logging
import sys
import threading
from typing import TextIO

import chatfilter
from chatfilter.commands import FilterCommands, is_command
from chatfilter.config import ChatFilterConfig
from chatfilter.engine import FilterEngine
from chatfilter.hook import ChatInterceptor, ConsoleSink

logger = logging.getLogger("chatfilter.bootstrap")


class ErrorCodes:
    OK = 0
    ERROR = 1
    USAGE = 2
    CFG_FILE = 17


def start_line_reader(loop: asyncio.AbstractEventLoop, stream: TextIO, queue: asyncio.Queue):
    """
    Read lines from a blocking text stream in a daemon thread and put them on an asyncio queue.
    None is put on the queue at end of stream.
    """
    def post(item) -> bool:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:  # loop closed
            return False
        return True

    def read_lines():
        for line in stream:
            if not post(line.rstrip('\r\n')):
                return
        post(None)

    thread = threading.Thread(target=read_lines, name='chat-reader', daemon=True)
    thread.start()
    return thread


async def read_chat(engine: FilterEngine,
                    interceptor: ChatInterceptor,
                    commands: FilterCommands,
                    stream: TextIO):
    """
    Route each incoming chat line until end of input: ``/adblock`` lines to the command handler,
    everything else through the filter to the chat display.
    """
    queue = asyncio.Queue()
    start_line_reader(engine.loop, stream, queue)

    # local filter files now, remote refresh in the background
    engine.initialize()

    while True:
        line = await queue.get()
        if line is None:
            logger.info("End of chat input")
            break
        elif is_command(line):
            commands.run_line(line)
        else:
            interceptor.on_message(line)


def cancel_pending(loop: asyncio.AbstractEventLoop):
    logger.debug("Cancelling pending tasks...")
    pending = asyncio.all_tasks(loop)
    if not pending:
        return
    for pending_task in pending:
        pending_task.cancel()
    results = loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    for result in results:
        if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
            logger.error("Task raised during shutdown", exc_info=result)


def run(config: ChatFilterConfig, stdin: TextIO=None, stdout: TextIO=None) -> int:
    """
    Run the chat filter on a line-oriented chat stream until end of input or Ctrl+C.

    :param config: The config file.
    :param stdin: Incoming chat lines. Default: ``sys.stdin``.
    :param stdout: The chat display. Default: ``sys.stdout``.
    :return: Process exit code, one of :class:`ErrorCodes`.
    """
    logger.info("Welcome to ChatFilter v{}, booting up...".format(chatfilter.__version__))
    if stdin is None:
        stdin = sys.stdin

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    sink = ConsoleSink(stdout)
    engine = FilterEngine(config, loop)
    interceptor = ChatInterceptor(engine.policy, engine.settings, sink)
    commands = FilterCommands(engine, sink.deliver)
    sink.deliver("ChatFilter loaded. Type /adblock help for commands.")

    # noinspection PyBroadException
    try:
        loop.run_until_complete(read_chat(engine, interceptor, commands, stdin))
        return ErrorCodes.OK
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return ErrorCodes.OK
    except Exception:
        logger.exception("Uncaught exception in chat filter")
        return ErrorCodes.ERROR
    finally:
        engine.shutdown()
        cancel_pending(loop)
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        asyncio.set_event_loop(None)
        logger.info("Exiting.")
