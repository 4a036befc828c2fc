from __future__ import annotations

import abc
import enum
import re
from typing import Any
from typing import Optional
from typing import Union

import pydantic

from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import IResource
from .core import OwnershipMode
from .core import Resource
from .core import parse_arn
from .errors import UnsupportedOnImportError
from .tokens import CapturedList


class ComparisonOperator(enum.Enum):
    GREATER_THAN_OR_EQUAL_TO_THRESHOLD = 'GreaterThanOrEqualToThreshold'
    GREATER_THAN_THRESHOLD = 'GreaterThanThreshold'
    LESS_THAN_THRESHOLD = 'LessThanThreshold'
    LESS_THAN_OR_EQUAL_TO_THRESHOLD = 'LessThanOrEqualToThreshold'


OPERATOR_SYMBOLS = {
    ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD: '>=',
    ComparisonOperator.GREATER_THAN_THRESHOLD: '>',
    ComparisonOperator.LESS_THAN_THRESHOLD: '<',
    ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD: '<=',
}


class TreatMissingData(enum.Enum):
    BREACHING = 'breaching'
    NOT_BREACHING = 'notBreaching'
    IGNORE = 'ignore'
    MISSING = 'missing'


class Statistic(enum.Enum):
    SAMPLE_COUNT = 'SampleCount'
    AVERAGE = 'Average'
    SUM = 'Sum'
    MINIMUM = 'Minimum'
    MAXIMUM = 'Maximum'


class Unit(enum.Enum):
    SECONDS = 'Seconds'
    MICROSECONDS = 'Microseconds'
    MILLISECONDS = 'Milliseconds'
    BYTES = 'Bytes'
    KILOBYTES = 'Kilobytes'
    MEGABYTES = 'Megabytes'
    GIGABYTES = 'Gigabytes'
    BITS = 'Bits'
    PERCENT = 'Percent'
    COUNT = 'Count'
    BYTES_PER_SECOND = 'Bytes/Second'
    COUNT_PER_SECOND = 'Count/Second'
    NONE = 'None'


class SimpleStatistic(pydantic.BaseModel):
    statistic: Statistic


class PercentileStatistic(pydantic.BaseModel):
    percentile: float

    @property
    def extended_statistic(self) -> str:
        return f'p{self.percentile:g}'


_STATISTIC_ALIASES = {
    'average': Statistic.AVERAGE,
    'avg': Statistic.AVERAGE,
    'sum': Statistic.SUM,
    'min': Statistic.MINIMUM,
    'minimum': Statistic.MINIMUM,
    'max': Statistic.MAXIMUM,
    'maximum': Statistic.MAXIMUM,
    'n': Statistic.SAMPLE_COUNT,
    'samplecount': Statistic.SAMPLE_COUNT,
}

_PERCENTILE_RE = re.compile(r'^p(\d+(?:\.\d+)?)$')


def parse_statistic(stat: Union[str, Statistic]) -> Union[SimpleStatistic, PercentileStatistic]:
    """Parse a statistic name (``Average``, ``max``, ``p99``, ``p99.9``...)"""
    if isinstance(stat, Statistic):
        return SimpleStatistic(statistic=stat)
    lowered = stat.lower()
    if lowered in _STATISTIC_ALIASES:
        return SimpleStatistic(statistic=_STATISTIC_ALIASES[lowered])
    match = _PERCENTILE_RE.match(lowered)
    if match:
        return PercentileStatistic(percentile=float(match.group(1)))
    raise ValueError(f'Not a valid statistic: {stat!r}, must be one of Average, Minimum, Maximum, SampleCount, Sum or pNN.NN')


def describe_period(seconds: Union[int, float]) -> str:
    """Human readable description of an evaluation period"""
    if seconds == 60:
        return '1 minute'
    if seconds == 1:
        return '1 second'
    if seconds > 60:
        return f'{seconds / 60:g} minutes'
    return f'{seconds:g} seconds'


class Metric(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    namespace: str
    metric_name: str
    dimensions: dict[str, Any] = pydantic.Field(default_factory=dict)
    period_sec: int = pydantic.Field(300, description='The period over which the statistic is applied, in seconds')
    statistic: str = 'Average'
    unit: Optional[Unit] = None
    label: Optional[str] = None

    @pydantic.field_validator('statistic')
    @classmethod
    def _check_statistic(cls, value: str) -> str:
        parse_statistic(value)
        return value

    def dimensions_as_list(self) -> list[dict[str, Any]]:
        return [{'Name': name, 'Value': value} for name, value in self.dimensions.items()]

    def with_(self, **changes: Any) -> Metric:
        """Return a copy of this metric with some fields changed"""
        return self.model_validate({**self.model_dump(), **changes})

    def create_alarm(self, scope: IConstruct, id: str, **props: Any) -> Alarm:
        return Alarm(scope, id, metric=self, **props)

    def to_alarm_json(self) -> dict[str, Any]:
        stat = parse_statistic(self.statistic)
        dimensions = self.dimensions_as_list()
        return {
            'Dimensions': dimensions or None,
            'Namespace': self.namespace,
            'MetricName': self.metric_name,
            'Period': self.period_sec,
            'Statistic': stat.statistic if isinstance(stat, SimpleStatistic) else None,
            'ExtendedStatistic': stat.extended_statistic if isinstance(stat, PercentileStatistic) else None,
            'Unit': self.unit,
        }


class AlarmProps(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra='forbid')

    metric: Metric
    threshold: Union[int, float]
    evaluation_periods: int = pydantic.Field(..., ge=1)
    comparison_operator: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD
    alarm_name: Optional[str] = None
    alarm_description: Optional[str] = None
    datapoints_to_alarm: Optional[int] = None
    evaluate_low_sample_count_percentile: Optional[str] = None
    treat_missing_data: Optional[TreatMissingData] = None
    actions_enabled: Optional[bool] = None


class HorizontalAnnotation(pydantic.BaseModel):
    label: str
    value: Union[int, float]
    color: Optional[str] = None
    visible: bool = True


class IAlarm(IResource):
    alarm_arn: ArnValue
    alarm_name: ArnValue

    @abc.abstractmethod
    def to_annotation(self) -> HorizontalAnnotation:
        ...


class IAlarmAction(abc.ABC):
    """Something an alarm can notify, such as a topic or a scaling action"""

    @abc.abstractmethod
    def bind(self, alarm: IAlarm) -> ArnValue:
        ...


class Alarm(Resource, IAlarm):
    """
    An alarm on a CloudWatch metric.

    Alarm, insufficient data and OK actions are absent from the output until the first
    ``add_*_action`` call. Calling one without any action renders an empty list.
    """

    def __init__(self, scope: IConstruct, id: str, props: Optional[AlarmProps] = None, **kwargs: Any):
        super().__init__(scope, id)
        if props is None:
            props = AlarmProps(**kwargs)
        elif kwargs:
            raise ValueError('props and keyword arguments cannot both be provided')
        self.props = props
        self.metric = props.metric
        self._alarm_action_arns: CapturedList[ArnValue] = CapturedList(absent_until_added=True, name='alarm actions', owner=self)
        self._insufficient_data_action_arns: CapturedList[ArnValue] = CapturedList(
            absent_until_added=True, name='insufficient data actions', owner=self
        )
        self._ok_action_arns: CapturedList[ArnValue] = CapturedList(absent_until_added=True, name='ok actions', owner=self)

        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::CloudWatch::Alarm',
            properties={
                'AlarmDescription': props.alarm_description,
                'AlarmName': props.alarm_name,
                'ComparisonOperator': props.comparison_operator,
                'Threshold': props.threshold,
                'DatapointsToAlarm': props.datapoints_to_alarm,
                'EvaluateLowSampleCountPercentile': props.evaluate_low_sample_count_percentile,
                'EvaluationPeriods': props.evaluation_periods,
                'TreatMissingData': props.treat_missing_data,
                'ActionsEnabled': props.actions_enabled,
                'AlarmActions': self._alarm_action_arns.token(),
                'InsufficientDataActions': self._insufficient_data_action_arns.token(),
                'OKActions': self._ok_action_arns.token(),
                **self.metric.to_alarm_json(),
            },
        )
        self.alarm_arn = self.resource.get_att('Arn')
        self.alarm_name = self.resource.ref

    @classmethod
    def from_alarm_arn(cls, scope: IConstruct, id: str, alarm_arn: ArnValue) -> IAlarm:
        return _ImportedAlarm(scope, id, alarm_arn)

    def add_alarm_action(self, *actions: IAlarmAction) -> None:
        """Trigger these actions when the alarm fires"""
        self._alarm_action_arns.extend([action.bind(self) for action in actions])

    def add_insufficient_data_action(self, *actions: IAlarmAction) -> None:
        self._insufficient_data_action_arns.extend([action.bind(self) for action in actions])

    def add_ok_action(self, *actions: IAlarmAction) -> None:
        self._ok_action_arns.extend([action.bind(self) for action in actions])

    def to_annotation(self) -> HorizontalAnnotation:
        props = self.props
        symbol = OPERATOR_SYMBOLS[props.comparison_operator]
        period = describe_period(props.evaluation_periods * self.metric.period_sec)
        return HorizontalAnnotation(
            label=f'{self.metric.label or self.metric.metric_name} {symbol} {props.threshold} for {props.evaluation_periods} datapoints within {period}',
            value=props.threshold,
        )


class _ImportedAlarm(Resource, IAlarm):
    _ownership_mode = OwnershipMode.IMPORTED

    def __init__(self, scope: IConstruct, id: str, alarm_arn: ArnValue):
        super().__init__(scope, id)
        self.alarm_arn = alarm_arn
        self.alarm_name = parse_arn(alarm_arn, sep=':').resource_name

    def to_annotation(self) -> HorizontalAnnotation:
        raise UnsupportedOnImportError(f'{self.node.path}: the threshold of an imported alarm is not known, it cannot be turned into an annotation')
