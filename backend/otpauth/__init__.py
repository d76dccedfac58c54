# otpauth - phone number OTP authentication and token lifecycle service
