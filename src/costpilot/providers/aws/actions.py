"""AWS action adapter: applies recommendations with boto3"""

from typing import Any, Callable, Dict, Optional
import logging

import boto3
from botocore.exceptions import (
    BotoCoreError, ClientError, ConnectionError as BotoConnectionError, HTTPClientError
)

from ...core.base import ActionAdapter, ActionOutcome, Recommendation, ResourceType, WasteKind
from ...core.exceptions import FatalExecutionError, TransientExecutionError

logger = logging.getLogger(__name__)

THROTTLING_CODES = frozenset({
    "Throttling", "ThrottlingException", "ThrottledException", "RequestLimitExceeded",
    "TooManyRequestsException", "RequestThrottled", "SlowDown",
    "ServiceUnavailable", "InternalError", "InternalFailure", "RequestTimeout",
})

LIFECYCLE_RULE_ID = "costpilot-storage-tiering"
CONSOLIDATION_TAG = "costpilot:consolidate"


def translate_client_error(error: Exception) -> Exception:
    """Map a botocore error onto the transient/fatal execution errors"""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        message = error.response.get("Error", {}).get("Message", str(error))
        text = f"{code}: {message}" if code else message
        if code in THROTTLING_CODES or status >= 500:
            return TransientExecutionError(text)
        return FatalExecutionError(text)
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientExecutionError(str(error))
    return FatalExecutionError(str(error))


class AwsActionAdapter(ActionAdapter):
    """One handler per (waste kind, resource type)"""

    def __init__(self, session: Optional[Any] = None, profile: Optional[str] = None,
                 region: Optional[str] = None):
        if session is None:
            session = boto3.Session(profile_name=profile) if profile else boto3.Session()
        self.session = session
        self.region = region
        self._clients: Dict[tuple, Any] = {}

        self.handlers: Dict[WasteKind, Callable[[Recommendation], ActionOutcome]] = {
            WasteKind.DELETE_UNATTACHED: self._delete_volume,
            WasteKind.VOLUME_MIGRATION: self._migrate_volume,
            WasteKind.DELETE_ORPHANED: self._delete_snapshot,
            WasteKind.SNAPSHOT_CLEANUP: self._archive_snapshot,
            WasteKind.RELEASE_EIP: self._release_eip,
            WasteKind.DELETE_UNUSED: self._delete_unused,
            WasteKind.NAT_CONSOLIDATION: self._tag_for_consolidation,
            WasteKind.LB_CONSOLIDATION: self._tag_for_consolidation,
            WasteKind.STORAGE_TIERING: self._enable_s3_lifecycle,
            WasteKind.RIGHTSIZING: self._rightsize,
            WasteKind.LAMBDA_RIGHTSIZING: self._resize_lambda,
        }

    def client(self, service: str, region: Optional[str] = None):
        key = (service, region or self.region)
        if key not in self._clients:
            if key[1]:
                self._clients[key] = self.session.client(service, region_name=key[1])
            else:
                self._clients[key] = self.session.client(service)
        return self._clients[key]

    def apply(self, recommendation: Recommendation) -> ActionOutcome:
        handler = self.handlers.get(recommendation.waste_kind)
        if handler is None:
            raise FatalExecutionError(f"No AWS handler for {recommendation.waste_kind.value}")

        try:
            return handler(recommendation)
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e) from e

    def _region(self, recommendation: Recommendation) -> Optional[str]:
        return recommendation.recommended_action.get("region")

    def _delete_volume(self, rec: Recommendation) -> ActionOutcome:
        ec2 = self.client('ec2', self._region(rec))
        snapshot = ec2.create_snapshot(
            VolumeId=rec.resource_id,
            Description=f"Backup before deleting volume {rec.resource_id}"
        )
        ec2.delete_volume(VolumeId=rec.resource_id)
        return ActionOutcome(True, f"Deleted volume {rec.resource_id}",
                             {'snapshot_id': snapshot['SnapshotId']})

    def _migrate_volume(self, rec: Recommendation) -> ActionOutcome:
        target = rec.recommended_action.get("targetVolumeType", "gp3")
        ec2 = self.client('ec2', self._region(rec))
        ec2.modify_volume(VolumeId=rec.resource_id, VolumeType=target)
        return ActionOutcome(True, f"Migrating volume {rec.resource_id} to {target}")

    def _delete_snapshot(self, rec: Recommendation) -> ActionOutcome:
        ec2 = self.client('ec2', self._region(rec))
        ec2.delete_snapshot(SnapshotId=rec.resource_id)
        return ActionOutcome(True, f"Deleted snapshot {rec.resource_id}")

    def _archive_snapshot(self, rec: Recommendation) -> ActionOutcome:
        if not rec.recommended_action.get("createArchive", True):
            return self._delete_snapshot(rec)
        ec2 = self.client('ec2', self._region(rec))
        ec2.modify_snapshot_tier(SnapshotId=rec.resource_id, StorageTier='archive')
        return ActionOutcome(True, f"Moved snapshot {rec.resource_id} to the archive tier")

    def _release_eip(self, rec: Recommendation) -> ActionOutcome:
        ec2 = self.client('ec2', self._region(rec))
        ec2.release_address(AllocationId=rec.resource_id)
        return ActionOutcome(True, f"Released Elastic IP {rec.resource_id}")

    def _delete_unused(self, rec: Recommendation) -> ActionOutcome:
        resource_type = ResourceType.parse(rec.resource_type)
        region = self._region(rec)
        if resource_type == ResourceType.NAT_GATEWAY:
            self.client('ec2', region).delete_nat_gateway(NatGatewayId=rec.resource_id)
        elif resource_type == ResourceType.LOAD_BALANCER:
            self.client('elbv2', region).delete_load_balancer(LoadBalancerArn=rec.resource_id)
        elif resource_type == ResourceType.SERVERLESS_FUNCTION:
            self.client('lambda', region).delete_function(FunctionName=rec.resource_id)
        else:
            raise FatalExecutionError(f"Cannot delete resources of type {rec.resource_type}")
        return ActionOutcome(True, f"Deleted {rec.resource_type} {rec.resource_id}")

    def _tag_for_consolidation(self, rec: Recommendation) -> ActionOutcome:
        tag = {'Key': CONSOLIDATION_TAG, 'Value': rec.id}
        region = self._region(rec)
        if ResourceType.parse(rec.resource_type) == ResourceType.LOAD_BALANCER:
            self.client('elbv2', region).add_tags(ResourceArns=[rec.resource_id], Tags=[tag])
        else:
            self.client('ec2', region).create_tags(Resources=[rec.resource_id], Tags=[tag])
        return ActionOutcome(True, f"Marked {rec.resource_id} for consolidation")

    def _enable_s3_lifecycle(self, rec: Recommendation) -> ActionOutcome:
        days = rec.recommended_action.get("transitionAfterDays", 30)
        storage_class = rec.recommended_action.get("targetStorageClass", "GLACIER")
        s3 = self.client('s3', self._region(rec))
        s3.put_bucket_lifecycle_configuration(
            Bucket=rec.resource_id,
            LifecycleConfiguration={
                'Rules': [{
                    'ID': LIFECYCLE_RULE_ID,
                    'Status': 'Enabled',
                    'Filter': {'Prefix': ''},
                    'Transitions': [{'Days': days, 'StorageClass': storage_class}],
                }]
            }
        )
        return ActionOutcome(True, f"Enabled lifecycle policy on bucket {rec.resource_id}")

    def _rightsize(self, rec: Recommendation) -> ActionOutcome:
        target = rec.recommended_action.get("targetInstanceType")
        if not target:
            raise FatalExecutionError(f"No target size known for {rec.resource_id}")

        resource_type = ResourceType.parse(rec.resource_type)
        region = self._region(rec)
        if resource_type == ResourceType.RELATIONAL_DATABASE:
            self.client('rds', region).modify_db_instance(
                DBInstanceIdentifier=rec.resource_id,
                DBInstanceClass=target,
                ApplyImmediately=False  # Apply during maintenance window
            )
            return ActionOutcome(True, f"Scheduled RDS modification to {target}")
        if resource_type == ResourceType.WAREHOUSE:
            self.client('redshift', region).resize_cluster(
                ClusterIdentifier=rec.resource_id, NodeType=target, Classic=False
            )
            return ActionOutcome(True, f"Resizing cluster {rec.resource_id} to {target}")

        ec2 = self.client('ec2', region)
        response = ec2.describe_instances(InstanceIds=[rec.resource_id])
        was_running = False
        if response['Reservations']:
            instance = response['Reservations'][0]['Instances'][0]
            if instance['State']['Name'] == 'running':
                was_running = True
                ec2.stop_instances(InstanceIds=[rec.resource_id])
                ec2.get_waiter('instance_stopped').wait(InstanceIds=[rec.resource_id])

        ec2.modify_instance_attribute(InstanceId=rec.resource_id, InstanceType={'Value': target})
        if was_running:
            ec2.start_instances(InstanceIds=[rec.resource_id])
        return ActionOutcome(True, f"Changed instance {rec.resource_id} to {target}",
                             {'restarted': was_running})

    def _resize_lambda(self, rec: Recommendation) -> ActionOutcome:
        memory = rec.recommended_action.get("targetMemorySizeMb")
        if not memory:
            raise FatalExecutionError(f"No target memory size known for {rec.resource_id}")
        self.client('lambda', self._region(rec)).update_function_configuration(
            FunctionName=rec.resource_id,
            MemorySize=memory
        )
        return ActionOutcome(True, f"Resized Lambda to {memory}MB")
