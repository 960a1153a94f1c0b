"""回复生成流水线。

每条新用户消息触发一次运行：

    scheduled → in_flight → completed | failed

- 只尝试一次，不自动重试。
- 成功：把模型输出写成一条 assistant 消息。
- 失败：分类为 QuotaExceeded 或 GenerationError，只记录日志与运行记录，
  不写占位消息，也不回传给发送消息的请求（该请求早已返回）。

同一会话的并发触发互不共享状态：每次运行读取自己的消息快照，
并截断到触发它的那条用户消息为止。
"""

import logging
import time
from typing import List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageRecord, utcnow
from chat_core.domain.exceptions import (
    BusinessError,
    ContextPreconditionError,
    GenerationError,
    QuotaExceededError,
)
from chat_core.domain.models import ChatRequest, ChatResult
from chat_core.infrastructure.logging.logger import log_event
from chat_core.pipeline.context_window import ContextWindowBuilder
from chat_core.pipeline.scheduler import BackgroundScheduler
from chat_core.pipeline.trace import FailureKind, PipelineRun, RunRecorder
from chat_core.providers.base import ProviderClient
from chat_core.services.conversations import ConversationManager
from chat_core.services.messages import MessageLedger


class CompletionPipeline:
    def __init__(
        self,
        ledger: MessageLedger,
        provider_client: ProviderClient,
        scheduler: BackgroundScheduler,
        conversations: Optional[ConversationManager] = None,
        builder: Optional[ContextWindowBuilder] = None,
        recorder: Optional[RunRecorder] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._ledger = ledger
        self._provider_client = provider_client
        self._scheduler = scheduler
        self._conversations = conversations
        self._builder = builder or ContextWindowBuilder()
        self._recorder = recorder or RunRecorder(settings.trace_dir)
        self._model = model or settings.default_model
        self._max_tokens = max_tokens or settings.completion_max_tokens
        self._temperature = settings.completion_temperature if temperature is None else temperature

    @property
    def recorder(self) -> RunRecorder:
        return self._recorder

    def schedule(self, trigger: MessageRecord) -> PipelineRun:
        """登记一次运行并交给后台执行，立即返回。"""

        run = PipelineRun(
            conversation_id=trigger.conversation_id,
            trigger_message_id=trigger.id,
            user_id=trigger.user_id,
        )
        self._recorder.track(run)
        try:
            self._scheduler.submit(self.run, run, label=f"reply:{trigger.id}")
        except Exception as e:
            err = GenerationError(code="SCHEDULE_FAILED", message=str(e) or type(e).__name__)
            self._fail(run, "GenerationError", err, self._ctx(run))
            self._recorder.finalize(run)
            raise
        log_event(logging.INFO, "Scheduled reply generation", self._ctx(run))
        return run

    def run(self, run: PipelineRun) -> PipelineRun:
        start_time = time.time()
        log_ctx = self._ctx(run)
        run.state = "in_flight"
        run.started_at = utcnow()
        try:
            snapshot = self._snapshot(run)
            window = self._builder.build(snapshot)
            req = ChatRequest(
                provider=getattr(self._provider_client, "name", "unknown"),
                model=self._model,
                system_prompt=window.system_prompt,
                messages=window.turns,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
            log_event(
                logging.INFO,
                "Calling provider",
                log_ctx,
                provider=req.provider,
                model=req.model,
                message_count=len(req.messages),
            )
            result: ChatResult = self._provider_client.chat(req)
            text = result.text
            if not text.strip():
                raise GenerationError(code="EMPTY_RESPONSE", message="Provider returned an empty reply")
            reply = self._ledger.append_assistant(run.conversation_id, run.user_id, text)
        except QuotaExceededError as e:
            self._fail(run, "QuotaExceeded", e, log_ctx)
        except BusinessError as e:
            self._fail(run, "GenerationError", e, log_ctx)
        except Exception as e:  # noqa: BLE001 - 后台任务里的任何异常都归为生成失败
            err = GenerationError(code="UNEXPECTED_ERROR", message=str(e) or type(e).__name__)
            self._fail(run, "GenerationError", err, log_ctx)
        else:
            run.state = "completed"
            run.assistant_message_id = reply.id
            run.finished_at = utcnow()
            if self._conversations is not None:
                self._conversations.touch(run.conversation_id)
            usage = result.usage
            log_event(
                logging.INFO,
                "Stored assistant message",
                log_ctx,
                assistant_message_id=reply.id,
                elapsed_seconds=round(time.time() - start_time, 2),
                total_tokens=usage.total_tokens if usage else None,
            )
        finally:
            self._recorder.finalize(run)
        return run

    # ---- 辅助方法 ----

    def _snapshot(self, run: PipelineRun) -> List[MessageRecord]:
        """读取会话消息，截断到触发消息（含）为止。"""

        transcript = self._ledger.transcript(run.conversation_id)
        for idx, message in enumerate(transcript):
            if message.id == run.trigger_message_id:
                return transcript[: idx + 1]
        raise ContextPreconditionError(
            code="TRIGGER_NOT_FOUND",
            message="Triggering message is no longer in the conversation",
        )

    def _fail(self, run: PipelineRun, kind: FailureKind, err: BusinessError, log_ctx: dict) -> None:
        run.state = "failed"
        run.failure_kind = kind
        run.error_code = err.code
        run.error_message = err.message
        run.finished_at = utcnow()
        log_event(
            logging.WARNING if kind == "QuotaExceeded" else logging.ERROR,
            "Reply generation failed",
            log_ctx,
            failure_kind=kind,
            error_code=err.code,
            error=err.message,
        )

    @staticmethod
    def _ctx(run: PipelineRun) -> dict:
        return {
            "run_id": run.run_id,
            "conversation_id": run.conversation_id,
            "trigger_message_id": run.trigger_message_id,
        }
