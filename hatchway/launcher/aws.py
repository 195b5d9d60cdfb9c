"""Cross-account AWS sessions.

Pay models name an AWS account; the launcher acts in it through the
account's admin role.  Sessions are plain ``boto3.Session`` objects so
callers build whichever clients they need.
"""

from __future__ import annotations

import boto3

from hatchway.launcher.models.paymodel import PayModel


def assume_role_session(role_arn: str, region: str, session_name: str = "hatchway") -> boto3.Session:
    sts = boto3.client("sts", region_name=region)
    creds = sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name)["Credentials"]
    return boto3.Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region,
    )


def pay_model_session(pay_model: PayModel, default_region: str = "us-east-1") -> boto3.Session:
    """Session in *pay_model*'s account, in its region when it names one."""
    return assume_role_session(pay_model.admin_role_arn, pay_model.region or default_region, "hatchway-workspace")
