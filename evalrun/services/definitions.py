"""Payload builders for label-classification evals and completions runs."""

from evalrun.schemas.evals import (
    CompletionsDataSource,
    DataSourceConfig,
    EvalCreate,
    FileIdSource,
    InputMessage,
    RunCreate,
    SamplingParams,
    StringCheckGrader,
    TemplateMessages,
)

LABEL_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "input": {"type": "string"},
        "label": {"type": "string"},
    },
    "required": ["input", "label"],
}

DEFAULT_CRITERION = "match_label"
DEFAULT_INPUT_TEMPLATE = "{{item.input}}"


def build_label_eval(
    name: str,
    *,
    criterion_name: str = DEFAULT_CRITERION,
    operation: str = "eq",
    metadata: dict[str, str] | None = None,
) -> EvalCreate:
    """Eval definition that string-checks the model's output against ``item.label``."""
    return EvalCreate(
        name=name,
        data_source_config=DataSourceConfig(
            item_schema=LABEL_ITEM_SCHEMA,
            include_sample_schema=True,
        ),
        testing_criteria=[
            StringCheckGrader(
                name=criterion_name,
                input="{{sample.output_text}}",
                reference="{{item.label}}",
                operation=operation,
            )
        ],
        metadata=metadata,
    )


def build_completions_run(
    name: str,
    *,
    model: str,
    file_id: str,
    system_prompt: str | None = None,
    input_template: str = DEFAULT_INPUT_TEMPLATE,
    temperature: float | None = 0.0,
    max_completion_tokens: int | None = None,
    metadata: dict[str, str] | None = None,
) -> RunCreate:
    """Run payload that samples ``model`` on every item of an uploaded file."""
    messages = []
    if system_prompt:
        messages.append(InputMessage(role="developer", content=system_prompt))
    messages.append(InputMessage(role="user", content=input_template))

    sampling = None
    if temperature is not None or max_completion_tokens is not None:
        sampling = SamplingParams(
            temperature=temperature,
            max_completion_tokens=max_completion_tokens,
        )

    return RunCreate(
        name=name,
        data_source=CompletionsDataSource(
            model=model,
            input_messages=TemplateMessages(template=messages),
            source=FileIdSource(id=file_id),
            sampling_params=sampling,
        ),
        metadata=metadata,
    )
