"""EduStore 订单与支付履约服务"""
