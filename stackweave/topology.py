"""
The declared network and service stack.

A VPC with one public and two private subnets, a NAT gateway for private
egress, an internal network load balancer in front of a Fargate service, a
MySQL instance reachable only from the service's security group, a Secrets
Manager secret holding the connection details, a private REST API proxied to
the load balancer through a VPC link, and an SSM-managed bastion host.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .graph import ResourceGraph
from .model import (
    ANY_CIDR, DeletionPolicy, DeployContext, Output, Resource, ResourceTypes,
    Retention, SecurityRule, attr, ctx, join, ref, sensitive,
)
from .secrets import build_secret_payload
from .tags import as_tag_list, base_tags, resource_name

VPC_CIDR = "10.0.0.0/16"
SERVICE_PORT = 5024
DB_PORT = 3306
DB_NAME = "test"
DB_USER = "admin"
CONTAINER_NAME = "odata-app-container"
LOG_GROUP_NAME = "/ecs/odata-sample"
BASTION_AMI = "ami-0b72821e2f351e396"

T = ResourceTypes


@dataclass
class Topology:
    graph: ResourceGraph
    outputs: List[Output]


def secret_name(environment: str) -> str:
    return f"Sample/{environment}/DB/Connection"


def _assume(service: str) -> Dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": "sts:AssumeRole",
        }],
    }


def _policy(name: str, actions: List[str], resource: Any = "*") -> Dict[str, Any]:
    return {
        "PolicyName": name,
        "PolicyDocument": {
            "Version": "2012-10-17",
            "Statement": [{"Effect": "Allow", "Action": actions, "Resource": resource}],
        },
    }


class _Builder:
    """Accumulates resources with the deployment's naming and tagging applied."""

    def __init__(self, deploy: DeployContext, deployment_id: str, extra_tags: Optional[Dict[str, str]]):
        self.deploy = deploy
        self.graph = ResourceGraph()
        self.tags = base_tags(deployment_id, deploy.environment, extra_tags)

    def name(self, base: str) -> str:
        return resource_name(base, self.deploy.environment)

    def tagged(self, name: str) -> List[Dict[str, str]]:
        return as_tag_list({**self.tags, "Name": self.name(name)})

    def add(self, resource_id: str, resource_type: str, properties: Dict[str, Any],
            tag_name: Optional[str] = None, **kwargs) -> str:
        if tag_name:
            properties["Tags"] = self.tagged(tag_name)
        return self.graph.add_resource(Resource(resource_id, resource_type, properties, **kwargs))


def build_topology(deploy: DeployContext, deployment_id: str = "synth",
                   extra_tags: Optional[Dict[str, str]] = None) -> Topology:
    """
    Declare the full stack for a deploy context.

    Args:
        deploy: Environment, region, account and the database password
        deployment_id: Tagged onto every taggable resource
        extra_tags: Additional user tags

    Returns:
        Topology holding the graph and its six outputs
    """
    b = _Builder(deploy, deployment_id, extra_tags)
    password = sensitive(deploy.db_password or "")
    env = deploy.environment

    _network(b)
    _security_groups(b)
    _iam(b, env)

    # Database tier
    b.add("DBSubnetGroup", T.DB_SUBNET_GROUP, {
        "DBSubnetGroupDescription": "Subnet group for RDS instance",
        "SubnetIds": [ref("PrivateSubnet1"), ref("PrivateSubnet2")],
    })
    b.add("RDSMySQL", T.DATABASE, {
        "AllocatedStorage": "5",
        "DBInstanceClass": "db.t3.micro",
        "DBInstanceIdentifier": b.name("db"),
        "Engine": "mysql",
        "EngineVersion": "8.0.33",
        "MasterUsername": DB_USER,
        "MasterUserPassword": password,
        "DBName": DB_NAME,
        "Port": DB_PORT,
        "VPCSecurityGroups": [ref("RDSSecurityGroup")],
        "DBSubnetGroupName": ref("DBSubnetGroup"),
        "PubliclyAccessible": False,
        "MultiAZ": False,
        "DeletionProtection": False,
    }, metadata={"tier": "database"}, deletion_policy=DeletionPolicy.DELETE)
    b.add("SecretsManagerSecret", T.SECRET, {
        "Name": secret_name(env),
        "Description": "Database connection string",
        "SecretString": build_secret_payload(attr("RDSMySQL", "Endpoint.Address"), DB_NAME, DB_USER, password),
    })

    _service(b, env)
    _api(b)

    # Interface endpoints for private subnets
    for endpoint_id, service in (("ApiGatewayVPCEndpoint", "execute-api"),
                                 ("VPCSecretsManagerEndpoint", "secretsmanager")):
        b.add(endpoint_id, T.VPC_ENDPOINT, {
            "ServiceName": join("com.amazonaws.", ctx("region"), f".{service}"),
            "VpcId": ref("VPC"),
            "VpcEndpointType": "Interface",
            "PrivateDnsEnabled": True,
            "SubnetIds": [ref("PrivateSubnet1"), ref("PrivateSubnet2")],
            "SecurityGroupIds": [ref("VPCSecretsManagerEndpointSG")],
        })

    # Bastion host, reached through SSM
    b.add("BastionHostInstanceProfile", T.INSTANCE_PROFILE, {"Roles": [ref("BastionHostRole")]})
    b.add("BastionHost", T.INSTANCE, {
        "InstanceType": "t2.micro",
        "ImageId": BASTION_AMI,
        "IamInstanceProfile": ref("BastionHostInstanceProfile"),
        "NetworkInterfaces": [{
            "AssociatePublicIpAddress": False,
            "DeviceIndex": "0",
            "GroupSet": [ref("BastionSecurityGroup")],
            "SubnetId": ref("PrivateSubnet1"),
        }],
    }, tag_name="BastionHost")

    outputs = [
        Output("VPCId", ref("VPC"), "The VPC ID"),
        Output("PublicSubnetId", ref("PublicSubnet"), "The public subnet ID"),
        Output("PrivateSubnet1Id", ref("PrivateSubnet1"), "The first private subnet ID"),
        Output("PrivateSubnet2Id", ref("PrivateSubnet2"), "The second private subnet ID"),
        Output("RDSInstanceEndpoint", attr("RDSMySQL", "Endpoint.Address"), "The endpoint of the RDS instance"),
        Output("RDSInstancePort", attr("RDSMySQL", "Endpoint.Port"), "The port of the RDS instance"),
    ]
    return Topology(graph=b.graph, outputs=outputs)


def _network(b: _Builder) -> None:
    b.add("VPC", T.NETWORK, {
        "CidrBlock": VPC_CIDR,
        "EnableDnsSupport": True,
        "EnableDnsHostnames": True,
    }, tag_name="ODataVPC")
    b.add("InternetGateway", T.INTERNET_GATEWAY, {}, tag_name="ODataInternetGateway")
    b.add("AttachGateway", T.GATEWAY_ATTACHMENT, {
        "VpcId": ref("VPC"),
        "InternetGatewayId": ref("InternetGateway"),
    })

    b.add("PublicSubnet", T.SUBNET, {
        "VpcId": ref("VPC"),
        "CidrBlock": "10.0.0.0/24",
        "AvailabilityZone": join(ctx("region"), "a"),
        "MapPublicIpOnLaunch": True,
    }, tag_name="PublicSubnet", metadata={"tier": "public"})
    b.add("PublicRouteTable", T.ROUTE_TABLE, {"VpcId": ref("VPC")}, tag_name="PublicRouteTable")
    b.add("PublicRoute", T.ROUTE, {
        "RouteTableId": ref("PublicRouteTable"),
        "DestinationCidrBlock": ANY_CIDR,
        "GatewayId": ref("InternetGateway"),
    }, explicit_dependencies={"AttachGateway"})
    b.add("PublicSubnetRouteTableAssociation", T.ROUTE_TABLE_ASSOCIATION, {
        "SubnetId": ref("PublicSubnet"),
        "RouteTableId": ref("PublicRouteTable"),
    })

    b.add("EIP", T.ELASTIC_IP, {"Domain": "vpc"})
    b.add("NatGateway", T.NAT_GATEWAY, {
        "SubnetId": ref("PublicSubnet"),
        "AllocationId": attr("EIP", "AllocationId"),
    })

    for index, zone in ((1, "a"), (2, "b")):
        subnet = f"PrivateSubnet{index}"
        table = f"PrivateRouteTable{index}"
        acl = f"{subnet}NetworkAcl"
        b.add(subnet, T.SUBNET, {
            "VpcId": ref("VPC"),
            "CidrBlock": f"10.0.{index}.0/24",
            "AvailabilityZone": join(ctx("region"), zone),
            "MapPublicIpOnLaunch": False,
        }, tag_name=subnet, metadata={"tier": "private"})
        b.add(table, T.ROUTE_TABLE, {"VpcId": ref("VPC")}, tag_name=table)
        b.add(f"PrivateRoute{index}ToNatGateway", T.ROUTE, {
            "RouteTableId": ref(table),
            "DestinationCidrBlock": ANY_CIDR,
            "NatGatewayId": ref("NatGateway"),
        })
        b.add(f"{subnet}RouteTableAssociation", T.ROUTE_TABLE_ASSOCIATION, {
            "SubnetId": ref(subnet),
            "RouteTableId": ref(table),
        })
        b.add(acl, T.NETWORK_ACL, {"VpcId": ref("VPC")}, tag_name=acl)
        b.add(f"{acl}EntryInbound", T.NETWORK_ACL_ENTRY, {
            "NetworkAclId": ref(acl),
            "RuleNumber": 100,
            "Protocol": 6,
            "RuleAction": "allow",
            "Egress": False,
            "CidrBlock": VPC_CIDR,
            "PortRange": {"From": SERVICE_PORT, "To": SERVICE_PORT},
        })
        b.add(f"{acl}EntryOutbound", T.NETWORK_ACL_ENTRY, {
            "NetworkAclId": ref(acl),
            "RuleNumber": 200,
            "Protocol": 6,
            "RuleAction": "allow",
            "Egress": True,
            "CidrBlock": ANY_CIDR,
            "PortRange": {"From": 1024, "To": 65535},
        })


def _security_groups(b: _Builder) -> None:
    all_out = SecurityRule.egress(protocol="-1")

    b.add("BastionSecurityGroup", T.SECURITY_GROUP, {
        "GroupDescription": "Bastion Host Security Group",
        "VpcId": ref("VPC"),
    }, rules=[
        SecurityRule.ingress(22, cidr=ANY_CIDR),
        SecurityRule.ingress(443, cidr=ANY_CIDR),
        SecurityRule.ingress(80, cidr=ANY_CIDR),
        all_out,
    ], metadata={"ingress_role": "bastion"})
    b.add("LoadBalancerSecurityGroup", T.SECURITY_GROUP, {
        "GroupDescription": "NLB Security Group",
        "VpcId": ref("VPC"),
    }, rules=[
        SecurityRule.ingress(80, cidr=ANY_CIDR),
        SecurityRule.egress(SERVICE_PORT, cidr=VPC_CIDR),
    ], metadata={"ingress_role": "public-ingress"})
    b.add("ECSClusterSecurityGroup", T.SECURITY_GROUP, {
        "GroupDescription": "ECS Cluster Security Group",
        "VpcId": ref("VPC"),
    }, rules=[
        SecurityRule.ingress(SERVICE_PORT, source_group=ref("LoadBalancerSecurityGroup")),
        all_out,
    ])
    b.add("RDSSecurityGroup", T.SECURITY_GROUP, {
        "GroupDescription": "RDS Security Group",
        "VpcId": ref("VPC"),
    }, rules=[
        SecurityRule.ingress(DB_PORT, source_group=ref("ECSClusterSecurityGroup")),
        all_out,
    ])
    b.add("VPCSecretsManagerEndpointSG", T.SECURITY_GROUP, {
        "GroupDescription": "VPC Endpoint Security Group",
        "VpcId": ref("VPC"),
    }, rules=[SecurityRule.ingress(443, cidr=VPC_CIDR)])


def _iam(b: _Builder, env: str) -> None:
    secrets_read = ["secretsmanager:GetSecretValue", "secretsmanager:DescribeSecret"]

    b.add("AmazonEC2ContainerServiceAutoscaleRole", T.ROLE, {
        "AssumeRolePolicyDocument": _assume("application-autoscaling.amazonaws.com"),
        "Path": "/",
        "Policies": [_policy("ECSAutoScalingPolicy", [
            "cloudwatch:DescribeAlarms", "cloudwatch:PutMetricAlarm", "cloudwatch:DeleteAlarms",
            "ecs:UpdateService", "ecs:DescribeServices",
        ])],
    })
    b.add("AuthorizerLambdaRole", T.ROLE, {
        "AssumeRolePolicyDocument": _assume("lambda.amazonaws.com"),
        "Policies": [{
            "PolicyName": "LambdaExecutionPolicy",
            "PolicyDocument": {
                "Version": "2012-10-17",
                "Statement": [
                    {"Effect": "Allow", "Action": ["logs:CreateLogGroup", "logs:CreateLogStream", "logs:PutLogEvents"],
                     "Resource": "arn:aws:logs:*:*:*"},
                    {"Effect": "Allow", "Action": ["lambda:InvokeFunction"], "Resource": "*"},
                    {"Effect": "Allow", "Action": ["iam:PassRole"],
                     "Resource": join("arn:aws:iam::", ctx("account"), ":role/*")},
                ],
            },
        }],
    })
    b.add("BastionHostRole", T.ROLE, {
        "AssumeRolePolicyDocument": _assume("ec2.amazonaws.com"),
        "Path": "/",
        "ManagedPolicyArns": ["arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"],
        "Policies": [
            _policy("SSMAccessPolicy", [
                "ssm:DescribeInstanceInformation",
                "ssmmessages:CreateControlChannel", "ssmmessages:CreateDataChannel",
                "ssmmessages:OpenControlChannel", "ssmmessages:OpenDataChannel",
                "ec2messages:*", "s3:GetEncryptionConfiguration", "kms:Decrypt",
            ]),
            _policy("SecretsManagerPolicy", secrets_read),
        ],
    })
    b.add("ECSExecutionRole", T.ROLE, {
        "AssumeRolePolicyDocument": _assume("ecs-tasks.amazonaws.com"),
        "Path": "/",
        "Policies": [_policy("ECSExecutionPolicy", [
            "ecr:GetDownloadUrlForLayer", "ecr:BatchGetImage", "ecr:GetAuthorizationToken",
            "logs:CreateLogStream", "logs:PutLogEvents",
        ] + secrets_read)],
    })
    b.add("ECSServiceRole", T.ROLE, {
        "AssumeRolePolicyDocument": _assume("ecs-tasks.amazonaws.com"),
        "Path": "/",
        "Policies": [_policy("ECSServicePolicy", [
            "ec2:Describe*",
            "elasticloadbalancing:Describe*",
            "elasticloadbalancing:DeregisterTargets",
            "elasticloadbalancing:RegisterTargets",
            "logs:CreateLogStream", "logs:PutLogEvents",
        ] + secrets_read)],
    })
    b.add("SecretsManagerPolicy", T.POLICY, {
        "PolicyName": "SecretsManagerPolicy",
        "Roles": [ref("ECSServiceRole")],
        "PolicyDocument": {
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Action": ["secretsmanager:GetSecretValue"],
                "Resource": join("arn:aws:secretsmanager:", ctx("region"), ":", ctx("account"),
                                 f":secret:{secret_name(env)}-*"),
            }],
        },
    })


def _service(b: _Builder, env: str) -> None:
    b.add("SampleLogGroup", T.LOG_GROUP, {"LogGroupName": LOG_GROUP_NAME, "RetentionInDays": 7},
          retention=Retention.EPHEMERAL)
    b.add("ECS", T.CLUSTER, {"ClusterName": b.name("odata-cluster")})
    b.add("ODataTargetGroup", T.TARGET_GROUP, {
        "Name": b.name("odata-target-group"),
        "TargetType": "ip",
        "Port": SERVICE_PORT,
        "Protocol": "TCP",
        "VpcId": ref("VPC"),
        "HealthCheckProtocol": "TCP",
        "HealthCheckPort": str(SERVICE_PORT),
        "HealthCheckIntervalSeconds": 120,
        "HealthCheckTimeoutSeconds": 30,
        "HealthyThresholdCount": 5,
        "UnhealthyThresholdCount": 2,
    })
    b.add("NLB", T.LOAD_BALANCER, {
        "Name": b.name("odata-nlb"),
        "Subnets": [ref("PrivateSubnet1"), ref("PrivateSubnet2")],
        "Scheme": "internal",
        "Type": "network",
    })
    b.add("ODataListenerTCP", T.LISTENER, {
        "DefaultActions": [{"Type": "forward", "TargetGroupArn": ref("ODataTargetGroup")}],
        "LoadBalancerArn": ref("NLB"),
        "Port": 80,
        "Protocol": "TCP",
    })
    b.add("SampleTaskDefinition", T.TASK_DEFINITION, {
        "Family": "odata-sample",
        "NetworkMode": "awsvpc",
        "ContainerDefinitions": [{
            "Name": CONTAINER_NAME,
            "Image": join(ctx("account"), ".dkr.ecr.", ctx("region"), ".amazonaws.com/odata-sample:latest"),
            "Essential": True,
            "PortMappings": [{"ContainerPort": SERVICE_PORT}],
            "Environment": [
                {"Name": "ASPNETCORE_ENVIRONMENT", "Value": ctx("environment")},
                {"Name": "AWS_REGION", "Value": ctx("region")},
                {"Name": "SECRETS_MANAGER_SECRET_NAME", "Value": secret_name(env)},
            ],
            "LogConfiguration": {
                "LogDriver": "awslogs",
                "Options": {
                    "awslogs-group": ref("SampleLogGroup"),
                    "awslogs-region": ctx("region"),
                    "awslogs-stream-prefix": "odata",
                },
            },
        }],
        "RequiresCompatibilities": ["FARGATE"],
        "Cpu": "256",
        "Memory": "512",
        "ExecutionRoleArn": attr("ECSExecutionRole", "Arn"),
        "TaskRoleArn": attr("ECSServiceRole", "Arn"),
        "RuntimePlatform": {"CpuArchitecture": "ARM64", "OperatingSystemFamily": "LINUX"},
    }, explicit_dependencies={"SecretsManagerPolicy", "ECSExecutionRole", "ECSServiceRole"})
    b.add("SampleService", T.SERVICE, {
        "Cluster": ref("ECS"),
        "DesiredCount": 1,
        "LaunchType": "FARGATE",
        "TaskDefinition": ref("SampleTaskDefinition"),
        "NetworkConfiguration": {
            "AwsvpcConfiguration": {
                "Subnets": [ref("PrivateSubnet1"), ref("PrivateSubnet2")],
                "SecurityGroups": [ref("ECSClusterSecurityGroup")],
                "AssignPublicIp": "DISABLED",
            },
        },
        "LoadBalancers": [{
            "ContainerName": CONTAINER_NAME,
            "ContainerPort": SERVICE_PORT,
            "TargetGroupArn": ref("ODataTargetGroup"),
        }],
    }, explicit_dependencies={"ODataListenerTCP", "ECSServiceRole", "ECSExecutionRole", "SecretsManagerSecret"})
    b.add("ECSServiceScalingTarget", T.SCALABLE_TARGET, {
        "MaxCapacity": 10,
        "MinCapacity": 1,
        "ResourceId": join("service/", ref("ECS"), "/", ref("SampleService")),
        "RoleARN": attr("AmazonEC2ContainerServiceAutoscaleRole", "Arn"),
        "ScalableDimension": "ecs:service:DesiredCount",
        "ServiceNamespace": "ecs",
    }, explicit_dependencies={"AmazonEC2ContainerServiceAutoscaleRole"})
    b.add("AutoScalingPolicy", T.SCALING_POLICY, {
        "PolicyName": "odata-scaling-policy",
        "PolicyType": "TargetTrackingScaling",
        "ScalingTargetId": ref("ECSServiceScalingTarget"),
        "TargetTrackingScalingPolicyConfiguration": {
            "PredefinedMetricSpecification": {"PredefinedMetricType": "ECSServiceAverageCPUUtilization"},
            "TargetValue": 50,
        },
    })


def _api(b: _Builder) -> None:
    b.add("ApiGatewayRestApi", T.API, {
        "Name": b.name("odata-api"),
        "Description": "OData API Gateway",
        "EndpointConfiguration": {"Types": ["PRIVATE"]},
    })
    b.add("ApiGatewayResource", T.API_RESOURCE, {
        "ParentId": attr("ApiGatewayRestApi", "RootResourceId"),
        "PathPart": "odata",
        "RestApiId": ref("ApiGatewayRestApi"),
    })
    b.add("AuthorizerLambda", T.FUNCTION, {
        "Handler": "index.handler",
        "Role": attr("AuthorizerLambdaRole", "Arn"),
        "Runtime": "nodejs20.x",
        "Code": {"ZipFile": AUTHORIZER_SOURCE},
    }, retention=Retention.EPHEMERAL)
    b.add("LambdaPermission", T.FUNCTION_PERMISSION, {
        "Action": "lambda:InvokeFunction",
        "FunctionName": ref("AuthorizerLambda"),
        "Principal": "apigateway.amazonaws.com",
    }, retention=Retention.EPHEMERAL)
    b.add("ApiGatewayAuthorizer", T.API_AUTHORIZER, {
        "Name": "Authorizer",
        "Type": "TOKEN",
        "AuthorizerUri": join("arn:aws:apigateway:", ctx("region"), ":lambda:path/2015-03-31/functions/",
                              attr("AuthorizerLambda", "Arn"), "/invocations"),
        "IdentitySource": "method.request.header.Authorization",
        "RestApiId": ref("ApiGatewayRestApi"),
    })
    b.add("VPCLink", T.VPC_LINK, {"Name": b.name("ODataVpcLink"), "TargetArns": [ref("NLB")]})
    b.add("ApiGatewayMethod", T.API_METHOD, {
        "AuthorizationType": "CUSTOM",
        "AuthorizerId": ref("ApiGatewayAuthorizer"),
        "HttpMethod": "ANY",
        "ResourceId": ref("ApiGatewayResource"),
        "RestApiId": ref("ApiGatewayRestApi"),
        "Integration": {
            "ConnectionType": "VPC_LINK",
            "ConnectionId": ref("VPCLink"),
            "IntegrationHttpMethod": "ANY",
            "Type": "HTTP_PROXY",
            "Uri": join("http://", attr("NLB", "DnsName"), "/odata"),
        },
    })


AUTHORIZER_SOURCE = """exports.handler = async function(event) {
  return {
    principalId: 'user',
    policyDocument: {
      Version: '2012-10-17',
      Statement: [
        {
          Action: 'execute-api:Invoke',
          Effect: 'Allow',
          Resource: event.methodArn
        }
      ]
    }
  };
};
"""
