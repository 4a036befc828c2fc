from __future__ import annotations

import enum
import logging
from typing import Any
from typing import Optional
from typing import Union

import pydantic

from .cloudwatch import IAlarm
from .cloudwatch import IAlarmAction
from .construct import Construct
from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import IResource
from .core import OwnershipMode
from .core import Resource
from .errors import InvalidTierError
from .iam import IRole
from .tokens import CapturedList


class AdjustmentType(enum.Enum):
    CHANGE_IN_CAPACITY = 'ChangeInCapacity'
    PERCENT_CHANGE_IN_CAPACITY = 'PercentChangeInCapacity'
    EXACT_CAPACITY = 'ExactCapacity'


class MetricAggregationType(enum.Enum):
    AVERAGE = 'Average'
    MINIMUM = 'Minimum'
    MAXIMUM = 'Maximum'


class ServiceNamespace(enum.Enum):
    ECS = 'ecs'
    ELASTIC_MAP_REDUCE = 'elasticmapreduce'
    EC2 = 'ec2'
    APPSTREAM = 'appstream'
    DYNAMODB = 'dynamodb'
    RDS = 'rds'
    SAGEMAKER = 'sagemaker'
    CUSTOM_RESOURCE = 'custom-resource'
    LAMBDA = 'lambda'


class AdjustmentTier(pydantic.BaseModel):
    adjustment: Union[int, float] = pydantic.Field(..., description='What number to adjust the capacity with. Interpreted according to the adjustment type of the action.')
    lower_bound: Optional[Union[int, float]] = pydantic.Field(
        None, description='The tier applies when the metric minus the alarm threshold is higher than this value. Default: -infinity'
    )
    upper_bound: Optional[Union[int, float]] = pydantic.Field(
        None, description='The tier applies when the metric minus the alarm threshold is lower than this value. Default: +infinity'
    )

    def to_step_adjustment(self) -> dict[str, Any]:
        return {
            'MetricIntervalLowerBound': self.lower_bound,
            'MetricIntervalUpperBound': self.upper_bound,
            'ScalingAdjustment': self.adjustment,
        }


class IScalableTarget(IResource):
    scalable_target_id: ArnValue


class ScalableTarget(Resource, IScalableTarget):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        service_namespace: ServiceNamespace,
        resource_id: str,
        scalable_dimension: str,
        min_capacity: int,
        max_capacity: int,
        role: Optional[IRole] = None,
    ):
        super().__init__(scope, id)
        if max_capacity < 0 or min_capacity < 0:
            raise ValueError(f'capacities must be non-negative, got min={min_capacity} max={max_capacity}')
        if max_capacity < min_capacity:
            raise ValueError(f'max_capacity ({max_capacity}) must be greater than or equal to min_capacity ({min_capacity})')
        self.role = role
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::ApplicationAutoScaling::ScalableTarget',
            properties={
                'MaxCapacity': max_capacity,
                'MinCapacity': min_capacity,
                'ResourceId': resource_id,
                'RoleARN': role.role_arn if role is not None else None,
                'ScalableDimension': scalable_dimension,
                'ServiceNamespace': service_namespace,
            },
        )
        self.scalable_target_id = self.resource.ref

    @classmethod
    def from_scalable_target_id(cls, scope: IConstruct, id: str, scalable_target_id: ArnValue) -> IScalableTarget:
        return _ImportedScalableTarget(scope, id, scalable_target_id)


class _ImportedScalableTarget(Resource, IScalableTarget):
    _ownership_mode = OwnershipMode.IMPORTED

    def __init__(self, scope: IConstruct, id: str, scalable_target_id: ArnValue):
        super().__init__(scope, id)
        self.scalable_target_id = scalable_target_id


class StepScalingActionProps(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True, extra='forbid')

    scaling_target: IScalableTarget
    policy_name: Optional[str] = None
    adjustment_type: Optional[AdjustmentType] = None
    cooldown_sec: Optional[int] = None
    min_adjustment_magnitude: Optional[int] = None
    metric_aggregation_type: Optional[MetricAggregationType] = None


class StepScalingAction(Construct, IAlarmAction):
    """
    A step scaling policy.

    Adjustment tiers are added after construction with ``add_adjustment`` and are rendered in the order they
    were added. Tier ordering and overlap are not checked. The action only takes effect when used as an
    alarm action.
    """

    def __init__(self, scope: IConstruct, id: str, props: Optional[StepScalingActionProps] = None, **kwargs: Any):
        super().__init__(scope, id)
        if props is None:
            props = StepScalingActionProps(**kwargs)
        elif kwargs:
            raise ValueError('props and keyword arguments cannot both be provided')
        self.props = props
        self._adjustments: CapturedList[dict[str, Any]] = CapturedList(absent_until_added=True, name='step adjustments', owner=self)
        # either ScalingTargetId or ResourceId/ScalableDimension/ServiceNamespace may be given, never both
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::ApplicationAutoScaling::ScalingPolicy',
            properties={
                'PolicyName': props.policy_name or self.node.unique_id,
                'PolicyType': 'StepScaling',
                'ScalingTargetId': props.scaling_target.scalable_target_id,
                'StepScalingPolicyConfiguration': {
                    'AdjustmentType': props.adjustment_type,
                    'Cooldown': props.cooldown_sec,
                    'MinAdjustmentMagnitude': props.min_adjustment_magnitude,
                    'MetricAggregationType': props.metric_aggregation_type,
                    'StepAdjustments': self._adjustments.token(),
                },
            },
        )
        self.scaling_policy_arn = self.resource.ref

    @property
    def adjustments(self) -> list[dict[str, Any]]:
        return list(self._adjustments)

    def add_adjustment(self, tier: Optional[AdjustmentTier] = None, **kwargs: Any) -> None:
        """Add an adjustment tier. At least one of ``lower_bound`` and ``upper_bound`` must be set."""
        if tier is None:
            tier = AdjustmentTier(**kwargs)
        elif kwargs:
            raise ValueError('tier and keyword arguments cannot both be provided')
        if tier.lower_bound is None and tier.upper_bound is None:
            raise InvalidTierError(f'{self.node.path}: at least one of lower_bound or upper_bound is required')
        logging.debug(f'adding adjustment {tier.adjustment} [{tier.lower_bound}, {tier.upper_bound}] to {self.node.path}')
        self._adjustments.append(tier.to_step_adjustment())

    def bind(self, alarm: IAlarm) -> ArnValue:
        return self.scaling_policy_arn
